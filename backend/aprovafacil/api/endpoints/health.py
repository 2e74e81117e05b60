"""
Health check endpoints for the AprovaFácil API.

Liveness for load balancers and a readiness view that includes cache
backend connectivity.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from ...core.config import get_settings
from ...domain.cache.value_objects import CacheStatus

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns a simple health status for load balancers and monitoring systems.
    """
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/ready")
async def readiness_check(request: Request) -> Dict[str, Any]:
    """
    Readiness check endpoint.

    The cache is advisory, so a disconnected backend degrades the status
    instead of failing the check.
    """
    cache_manager = getattr(request.app.state, "cache_manager", None)
    if cache_manager is None:
        return {"status": "starting", "cache": None}

    statistics = await cache_manager.get_statistics()
    return {
        "status": "ready" if statistics.status is CacheStatus.CONNECTED else "degraded",
        "cache": {
            "provider": statistics.provider.value,
            "status": statistics.status.value,
            "error": statistics.error,
        },
    }
