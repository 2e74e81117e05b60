"""
Cached Repository

Read-through caching decorator for data-store repositories. Lookups are
served from the cache when possible; writes go to the repository first and
then invalidate the affected cache entries.
"""

import json
from typing import Any, Dict, Generic, Optional, Protocol, TypeVar

import structlog

from ...domain.cache.interfaces import CacheLogger, CacheService
from ...infrastructure.cache.exceptions import CacheException

T = TypeVar("T")

DEFAULT_REPOSITORY_TTL_MINUTES = 30


class Repository(Protocol[T]):
    """Async data-store repository contract."""

    async def find_by_id(self, entity_id: str) -> Optional[T]: ...

    async def find_all(self, filters: Optional[Dict[str, Any]] = None) -> Any: ...

    async def create(self, data: Dict[str, Any]) -> T: ...

    async def update(self, entity_id: str, data: Dict[str, Any]) -> T: ...

    async def delete(self, entity_id: str) -> bool: ...

    async def exists_by_id(self, entity_id: str) -> bool: ...


class CachedRepository(Generic[T]):
    """
    Repository decorator adding read-through caching.

    Keys:
        entity      ``{prefix}{id}``
        collection  ``{prefix}collection_{filters as JSON | all}``
        existence   ``{prefix}exists_{id}``

    Failing to populate the cache on a read is logged and the repository
    result returned. Failing to invalidate after a write raises, since the
    cache would otherwise serve stale data.
    """

    def __init__(
        self,
        repository: Repository[T],
        cache: CacheService,
        entity_name: str,
        ttl_minutes: Optional[float] = None,
        key_prefix: Optional[str] = None,
        logger: Optional[CacheLogger] = None,
    ):
        self._repository = repository
        self._cache = cache
        self.entity_name = entity_name
        self.ttl_minutes = (
            DEFAULT_REPOSITORY_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        )
        self.key_prefix = key_prefix or f"{entity_name.lower()}_"
        self._logger = logger or structlog.get_logger(__name__)

    def entity_key(self, entity_id: str) -> str:
        return f"{self.key_prefix}{entity_id}"

    def collection_key(self, filters: Optional[Dict[str, Any]] = None) -> str:
        suffix = (
            json.dumps(filters, sort_keys=True, separators=(",", ":"), default=str)
            if filters
            else "all"
        )
        return f"{self.collection_prefix}{suffix}"

    def exists_key(self, entity_id: str) -> str:
        return f"{self.key_prefix}exists_{entity_id}"

    @property
    def collection_prefix(self) -> str:
        return f"{self.key_prefix}collection_"

    async def find_by_id(self, entity_id: str) -> Optional[T]:
        key = self.entity_key(entity_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        entity = await self._repository.find_by_id(entity_id)
        if entity is not None:
            await self._populate(key, entity)
        return entity

    async def find_all(self, filters: Optional[Dict[str, Any]] = None) -> Any:
        key = self.collection_key(filters)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        entities = await self._repository.find_all(filters)
        if entities is not None:
            await self._populate(key, entities)
        return entities

    async def exists_by_id(self, entity_id: str) -> bool:
        key = self.exists_key(entity_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return bool(cached)

        exists = await self._repository.exists_by_id(entity_id)
        await self._populate(key, exists)
        return exists

    async def create(self, data: Dict[str, Any]) -> T:
        entity = await self._repository.create(data)
        await self._cache.clear_prefix(self.collection_prefix)
        await self._cache.clear_prefix(f"{self.key_prefix}exists_")
        return entity

    async def update(self, entity_id: str, data: Dict[str, Any]) -> T:
        entity = await self._repository.update(entity_id, data)
        await self._invalidate_entity(entity_id)
        return entity

    async def delete(self, entity_id: str) -> bool:
        deleted = await self._repository.delete(entity_id)
        await self._invalidate_entity(entity_id)
        return deleted

    async def _invalidate_entity(self, entity_id: str) -> None:
        await self._cache.delete(self.entity_key(entity_id))
        await self._cache.delete(self.exists_key(entity_id))
        await self._cache.clear_prefix(self.collection_prefix)

    async def _populate(self, key: str, value: Any) -> None:
        try:
            await self._cache.set(key, value, self.ttl_minutes)
        except CacheException as e:
            self._logger.warning(
                "Failed to cache repository result",
                entity=self.entity_name,
                key=key,
                error=e.message,
            )


def create_cached_repository(
    repository: Repository[T],
    cache: CacheService,
    entity_name: str,
    **options: Any,
) -> CachedRepository[T]:
    """Wrap ``repository`` with read-through caching."""
    return CachedRepository(repository, cache, entity_name, **options)
