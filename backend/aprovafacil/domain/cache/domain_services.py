"""
Cache Domain Services

Dependency-tracked cache invalidation. Cached values register the entities
they were computed from; when an entity changes, every dependent key is
removed, followed by a pattern sweep for keys that were never registered.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Set

import structlog

from .interfaces import CacheLogger, CacheService
from .value_objects import (
    CacheDependency,
    CacheDependencyType,
    CacheKey,
    TTL,
)


class CacheInvalidationService:
    """
    Domain service for cache invalidation strategies.

    The dependency map (``"{type}:{id}" -> {cache keys}``) is persisted in the
    cache itself under ``cache_dependency_map`` so it survives restarts for as
    long as the backend keeps it. Failures while deleting keys or persisting
    the map propagate to the caller.
    """

    DEPENDENCY_MAP_KEY = "cache_dependency_map"

    def __init__(self, cache: CacheService, logger: Optional[CacheLogger] = None):
        self._cache = cache
        self._logger = logger or structlog.get_logger(__name__)
        self._dependency_map: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    @property
    def dependency_map(self) -> Dict[str, Set[str]]:
        """Copy of the current dependency map."""
        return {dep: set(keys) for dep, keys in self._dependency_map.items()}

    def dependents_of(self, dependency: CacheDependency) -> Set[str]:
        return set(self._dependency_map.get(dependency.key, set()))

    async def load_dependency_map(self) -> int:
        """
        Load the persisted dependency map.

        Returns:
            Number of dependencies loaded (0 when nothing was stored)
        """
        stored = await self._cache.get(self.DEPENDENCY_MAP_KEY)

        loaded: Dict[str, Set[str]] = {}
        if isinstance(stored, list):
            for item in stored:
                if (
                    isinstance(item, (list, tuple))
                    and len(item) == 2
                    and isinstance(item[0], str)
                    and isinstance(item[1], list)
                ):
                    loaded[item[0]] = {str(key) for key in item[1]}
        elif stored is not None:
            self._logger.warning(
                "Ignoring malformed cache dependency map",
                stored_type=type(stored).__name__,
            )

        async with self._lock:
            self._dependency_map = loaded

        self._logger.info("Cache dependency map loaded", dependencies=len(loaded))
        return len(loaded)

    async def register_dependencies(
        self, key: str, dependencies: Iterable[CacheDependency]
    ) -> None:
        """Record that ``key`` must be invalidated when any dependency changes."""
        dependencies = list(dependencies)
        if not dependencies:
            return

        async with self._lock:
            for dependency in dependencies:
                self._dependency_map.setdefault(dependency.key, set()).add(key)
            await self._persist()

    async def invalidate_by_dependency(self, dependency: CacheDependency) -> int:
        """
        Remove every key registered against ``dependency``.

        Returns:
            Number of registered keys removed
        """
        async with self._lock:
            keys = self._dependency_map.get(dependency.key)
            if not keys:
                return 0

            for key in sorted(keys):
                await self._cache.delete(key)

            del self._dependency_map[dependency.key]
            # Removed keys no longer need tracking under other dependencies
            for other in list(self._dependency_map):
                self._dependency_map[other] -= keys
                if not self._dependency_map[other]:
                    del self._dependency_map[other]

            await self._persist()

        self._logger.info(
            "Cache invalidated by dependency",
            dependency=dependency.key,
            keys_invalidated=sorted(keys),
        )
        return len(keys)

    async def invalidate_by_pattern(self, pattern: str) -> int:
        """Remove keys containing ``pattern``."""
        removed = await self._cache.clear(pattern)
        self._logger.info(
            "Cache invalidated by pattern", pattern=pattern, keys_removed=removed
        )
        return removed

    async def invalidate(
        self, dependency: CacheDependency, patterns: Optional[List[str]] = None
    ) -> int:
        """Invalidate by dependency, then sweep the given patterns."""
        removed = await self.invalidate_by_dependency(dependency)
        for pattern in patterns or []:
            removed += await self.invalidate_by_pattern(pattern)
        return removed

    async def invalidate_user_cache(self, usuario_id: str) -> int:
        """Invalidate all cache entries related to a user."""
        removed = await self.invalidate(
            CacheDependency(CacheDependencyType.USER, usuario_id),
            [f"user_{usuario_id}"],
        )
        for key in (
            CacheKey.user_progress(usuario_id),
            CacheKey.study_plan(usuario_id),
        ):
            await self._cache.delete(str(key))
        removed += await self._cache.clear_prefix(f"resultado_simulado_{usuario_id}_")
        return removed

    async def invalidate_concurso_cache(self, concurso_id: str) -> int:
        """Invalidate all cache entries related to a concurso."""
        return await self.invalidate(
            CacheDependency(CacheDependencyType.CONCURSO, concurso_id),
            [f"concurso_{concurso_id}"],
        )

    async def invalidate_simulado_cache(self, simulado_id: str) -> int:
        """Invalidate all cache entries related to a simulado."""
        return await self.invalidate(
            CacheDependency(CacheDependencyType.SIMULADO, simulado_id),
            [f"simulado_{simulado_id}"],
        )

    async def invalidate_apostila_cache(self, apostila_id: str) -> int:
        """Invalidate all cache entries related to an apostila."""
        return await self.invalidate(
            CacheDependency(CacheDependencyType.APOSTILA, apostila_id),
            [f"apostila_{apostila_id}", str(CacheKey.handout_content(apostila_id))],
        )

    async def _persist(self) -> None:
        """Store the dependency map; caller holds the lock."""
        if not self._dependency_map:
            await self._cache.delete(self.DEPENDENCY_MAP_KEY)
            return

        serialized = [
            [dependency, sorted(keys)]
            for dependency, keys in sorted(self._dependency_map.items())
        ]
        await self._cache.set(
            self.DEPENDENCY_MAP_KEY, serialized, TTL.dependency_map().minutes
        )
