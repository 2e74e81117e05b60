"""
Cache Manager Service

High-level cache management service that orchestrates the cache backend,
dependency-tracked invalidation and per-domain cache helpers.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

import structlog

from ...core.config import Settings
from ...domain.cache.domain_services import CacheInvalidationService
from ...domain.cache.interfaces import CacheLogger, CacheService
from ...domain.cache.value_objects import (
    CacheDependency,
    CacheDependencyType,
    CacheKey,
    CacheStatistics,
    Identifier,
    TTL,
)
from ...infrastructure.cache.exceptions import CacheException
from .factory import create_cache_service

T = TypeVar("T")

DEFAULT_CLEANUP_INTERVAL_SECONDS = 30 * 60


class CacheManager:
    """
    High-level cache management service.

    Provides a unified interface for cache operations: plain key access,
    read-through ``get_or_set``, dependency-tracked invalidation and
    typed helpers for the platform's cached domains. Constructed once at
    application startup and injected where needed.
    """

    def __init__(
        self,
        cache: CacheService,
        logger: Optional[CacheLogger] = None,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ):
        self._cache = cache
        self._logger = logger or structlog.get_logger(__name__)
        self._invalidation = CacheInvalidationService(cache, self._logger)
        self._cleanup_interval = cleanup_interval_seconds
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, logger: Optional[CacheLogger] = None, **backend: Any
    ) -> "CacheManager":
        """Build a manager over the backend selected by ``settings``."""
        cache = create_cache_service(settings, logger=logger, **backend)
        return cls(
            cache,
            logger=logger,
            cleanup_interval_seconds=settings.CACHE_MANAGER_CLEANUP_INTERVAL_SECONDS,
        )

    @property
    def cache(self) -> CacheService:
        """The underlying cache service."""
        return self._cache

    @property
    def invalidation(self) -> CacheInvalidationService:
        return self._invalidation

    async def start(self) -> None:
        """Start the backend, load the dependency map and schedule cleanup."""
        await self._cache.start()
        await self._invalidation.load_dependency_map()

        if self._cleanup_interval > 0 and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

        self._logger.info(
            "Cache manager started",
            namespace=self._cache.namespace,
            cleanup_interval_seconds=self._cleanup_interval,
        )

    async def close(self) -> None:
        """Stop cleanup and release the backend."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self._cache.close()
        self._logger.info("Cache manager closed")

    # Basic Operations

    async def get(self, key: str) -> Optional[Any]:
        return await self._cache.get(key)

    async def set(
        self,
        key: str,
        value: Any,
        ttl_minutes: Optional[float] = None,
        dependencies: Optional[Iterable[CacheDependency]] = None,
    ) -> None:
        """
        Store a value and register the entities it depends on.

        Args:
            key: Cache key
            value: Value to cache
            ttl_minutes: Time to live (backend default if not provided)
            dependencies: Entities whose change must invalidate this key
        """
        await self._cache.set(key, value, ttl_minutes)
        if dependencies:
            await self._invalidation.register_dependencies(key, dependencies)

    async def delete(self, key: str) -> None:
        await self._cache.delete(key)

    async def exists(self, key: str) -> bool:
        return await self._cache.exists(key)

    async def clear(self, pattern: Optional[str] = None) -> int:
        return await self._cache.clear(pattern)

    async def clear_prefix(self, prefix: str) -> int:
        return await self._cache.clear_prefix(prefix)

    async def get_statistics(self) -> CacheStatistics:
        return await self._cache.get_statistics()

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl_minutes: Optional[float] = None,
        dependencies: Optional[Iterable[CacheDependency]] = None,
    ) -> T:
        """
        Read-through access: return the cached value or compute and cache it.

        Failures of ``factory`` propagate. A failure to store the computed
        value is logged and the value is still returned.
        """
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        value = await factory()
        if value is None:
            return value

        try:
            await self.set(key, value, ttl_minutes, dependencies)
        except CacheException as e:
            self._logger.error(
                "Failed to cache computed value",
                key=key,
                error_code=e.error_code,
                error=e.message,
            )
        return value

    # Invalidation

    async def invalidate(self, dependency: CacheDependency) -> int:
        """Invalidate every key registered against ``dependency``."""
        return await self._invalidation.invalidate_by_dependency(dependency)

    async def invalidate_entity(
        self, dependency_type: CacheDependencyType, entity_id: str
    ) -> int:
        """Invalidate an entity through its dedicated strategy when one exists."""
        handlers = {
            CacheDependencyType.USER: self.invalidate_user_cache,
            CacheDependencyType.CONCURSO: self.invalidate_concurso_cache,
            CacheDependencyType.SIMULADO: self.invalidate_simulado_cache,
            CacheDependencyType.APOSTILA: self.invalidate_apostila_cache,
        }
        handler = handlers.get(dependency_type)
        if handler is not None:
            return await handler(entity_id)
        return await self.invalidate(CacheDependency(dependency_type, entity_id))

    async def invalidate_user_cache(self, usuario_id: str) -> int:
        return await self._invalidation.invalidate_user_cache(usuario_id)

    async def invalidate_concurso_cache(self, concurso_id: str) -> int:
        return await self._invalidation.invalidate_concurso_cache(concurso_id)

    async def invalidate_simulado_cache(self, simulado_id: str) -> int:
        return await self._invalidation.invalidate_simulado_cache(simulado_id)

    async def invalidate_apostila_cache(self, apostila_id: str) -> int:
        return await self._invalidation.invalidate_apostila_cache(apostila_id)

    # Domain Cache Operations

    async def get_user_progress(self, usuario_id: Identifier) -> Optional[Any]:
        return await self._cache.get(str(CacheKey.user_progress(usuario_id)))

    async def cache_user_progress(self, usuario_id: Identifier, progress: Any) -> None:
        await self.set(
            str(CacheKey.user_progress(usuario_id)),
            progress,
            TTL.user_progress().minutes,
            [CacheDependency(CacheDependencyType.USER, str(usuario_id))],
        )

    async def get_simulado_result(
        self, usuario_id: Identifier, simulado_id: Identifier
    ) -> Optional[Any]:
        return await self._cache.get(
            str(CacheKey.simulado_result(usuario_id, simulado_id))
        )

    async def cache_simulado_result(
        self, usuario_id: Identifier, simulado_id: Identifier, result: Any
    ) -> None:
        await self.set(
            str(CacheKey.simulado_result(usuario_id, simulado_id)),
            result,
            TTL.simulado_result().minutes,
            [
                CacheDependency(CacheDependencyType.USER, str(usuario_id)),
                CacheDependency(CacheDependencyType.SIMULADO, str(simulado_id)),
            ],
        )

    async def get_weekly_questions(self, ano: int, semana: int) -> Optional[Any]:
        return await self._cache.get(str(CacheKey.weekly_questions(ano, semana)))

    async def cache_weekly_questions(
        self, ano: int, semana: int, questions: Any
    ) -> None:
        await self.set(
            str(CacheKey.weekly_questions(ano, semana)),
            questions,
            TTL.weekly_questions().minutes,
        )

    async def get_handout_content(self, apostila_id: Identifier) -> Optional[Any]:
        return await self._cache.get(str(CacheKey.handout_content(apostila_id)))

    async def cache_handout_content(self, apostila_id: Identifier, content: Any) -> None:
        await self.set(
            str(CacheKey.handout_content(apostila_id)),
            content,
            TTL.handout_content().minutes,
            [CacheDependency(CacheDependencyType.APOSTILA, str(apostila_id))],
        )

    async def get_study_plan(self, usuario_id: Identifier) -> Optional[Any]:
        return await self._cache.get(str(CacheKey.study_plan(usuario_id)))

    async def cache_study_plan(self, usuario_id: Identifier, plan: Any) -> None:
        await self.set(
            str(CacheKey.study_plan(usuario_id)),
            plan,
            TTL.study_plan().minutes,
            [CacheDependency(CacheDependencyType.USER, str(usuario_id))],
        )

    # Maintenance

    def get_config(self) -> Dict[str, Any]:
        """Effective cache configuration, for operators."""
        return {
            "provider": getattr(self._cache, "provider", "unknown"),
            "namespace": self._cache.namespace,
            "default_ttl_minutes": self._cache.default_ttl_minutes,
            "cleanup_interval_seconds": self._cleanup_interval,
            "domain_ttl_minutes": {
                "user_progress": TTL.user_progress().minutes,
                "simulado_result": TTL.simulado_result().minutes,
                "weekly_questions": TTL.weekly_questions().minutes,
                "handout_content": TTL.handout_content().minutes,
                "study_plan": TTL.study_plan().minutes,
            },
        }

    async def cleanup_expired_entries(self) -> int:
        """Purge expired entries from the backend."""
        try:
            removed = await self._cache.purge_expired()
        except CacheException as e:
            self._logger.error("Automatic cache cleanup failed", error=e.message)
            return 0

        if removed:
            self._logger.info("Cache cleanup removed expired entries", removed=removed)
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            await self.cleanup_expired_entries()
