"""
Cache Administration API Endpoints

Operator endpoints for inspecting and invalidating the application cache:
statistics, effective configuration, key listing, clearing and
entity-based invalidation.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ...domain.cache.value_objects import CacheDependencyType
from ...infrastructure.cache.exceptions import CacheException, CacheHTTPException
from ...services.cache.cache_manager import CacheManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin/cache", tags=["cache-admin"])


class ClearPatternRequest(BaseModel):
    """Clear-by-pattern request model."""

    pattern: Optional[str] = Field(
        None, description="Substring matched against namespaced cache keys"
    )


class InvalidateEntityRequest(BaseModel):
    """Entity invalidation request model."""

    type: Optional[str] = Field(None, description="Entity type, e.g. user, simulado")
    id: Optional[str] = Field(None, description="Entity identifier")


def get_cache_manager(request: Request) -> CacheManager:
    """Resolve the cache manager created at application startup."""
    cache_manager = getattr(request.app.state, "cache_manager", None)
    if cache_manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache manager not initialized",
        )
    return cache_manager


@router.get("/stats")
async def get_cache_statistics(
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Get cache statistics. Never fails: an unreachable backend reports its status."""
    statistics = await cache_manager.get_statistics()
    return {
        "success": True,
        "data": statistics.to_dict(),
        "message": "Cache statistics retrieved",
    }


@router.get("/config")
async def get_cache_config(
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Get the effective cache configuration."""
    return {
        "success": True,
        "data": cache_manager.get_config(),
        "message": "Cache configuration retrieved",
    }


@router.get("/keys")
async def list_cache_keys(
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """List keys in the cache namespace."""
    list_keys = getattr(cache_manager.cache, "keys", None)
    if list_keys is None:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Key listing is not supported by this cache backend",
        )

    try:
        keys = sorted(await list_keys())
    except CacheException as e:
        logger.error("Failed to list cache keys", error=e.message)
        raise CacheHTTPException(e) from e

    return {"success": True, "data": {"keys": keys, "count": len(keys)}}


@router.delete("")
async def clear_cache(
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Clear every key in the cache namespace."""
    try:
        removed = await cache_manager.clear()
    except CacheException as e:
        logger.error("Failed to clear cache", error=e.message)
        raise CacheHTTPException(e) from e

    logger.info("Cache cleared by operator", keys_removed=removed)
    return {
        "success": True,
        "data": {"keys_removed": removed},
        "message": "Cache cleared",
    }


@router.post("/clear-pattern")
async def clear_cache_by_pattern(
    body: ClearPatternRequest,
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Clear keys containing a pattern."""
    if not body.pattern:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A cache key pattern is required",
        )

    try:
        removed = await cache_manager.clear(body.pattern)
    except CacheException as e:
        logger.error("Failed to clear cache by pattern", pattern=body.pattern)
        raise CacheHTTPException(e) from e

    return {
        "success": True,
        "data": {"pattern": body.pattern, "keys_removed": removed},
        "message": f'Cache entries matching "{body.pattern}" cleared',
    }


@router.delete("/keys/{key}")
async def delete_cache_key(
    key: str,
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Delete a single cache key."""
    try:
        await cache_manager.delete(key)
    except CacheException as e:
        logger.error("Failed to delete cache key", key=key, error=e.message)
        raise CacheHTTPException(e) from e

    return {"success": True, "message": f"Cache key {key} deleted"}


@router.post("/invalidate")
async def invalidate_entity_cache(
    body: InvalidateEntityRequest,
    cache_manager: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Invalidate cache entries depending on an entity."""
    if not body.type or not body.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Entity type and id are required",
        )

    try:
        dependency_type = CacheDependencyType(body.type)
    except ValueError:
        allowed = ", ".join(item.value for item in CacheDependencyType)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid entity type. Must be one of: {allowed}",
        )

    try:
        removed = await cache_manager.invalidate_entity(dependency_type, body.id)
    except CacheException as e:
        logger.error(
            "Failed to invalidate entity cache",
            entity_type=body.type,
            entity_id=body.id,
            error=e.message,
        )
        raise CacheHTTPException(e) from e

    return {
        "success": True,
        "data": {"type": body.type, "id": body.id, "keys_removed": removed},
        "message": f"Cache for {body.type} {body.id} invalidated",
    }
