"""
Cache Service Interfaces

Structural contracts for cache backends and the logging sink they report to.
Backends satisfy these protocols without inheriting from them, so the rest of
the system stays backend-agnostic.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from .value_objects import CacheStatistics


@runtime_checkable
class CacheLogger(Protocol):
    """Three-level logging contract used by cache components."""

    def info(self, event: str, *args: Any, **kwargs: Any) -> Any: ...

    def warning(self, event: str, *args: Any, **kwargs: Any) -> Any: ...

    def error(self, event: str, *args: Any, **kwargs: Any) -> Any: ...


@runtime_checkable
class CacheService(Protocol):
    """
    Key-value cache with TTL, namespacing and pattern invalidation.

    Read operations (``get``, ``exists``, ``get_statistics``) never raise on
    backend failure: they report a miss, ``False`` or a degraded snapshot.
    Mutations (``set``, ``delete``, ``clear``, ``clear_prefix``) raise
    ``CacheException`` subclasses so lost writes and invalidations are visible.
    """

    @property
    def namespace(self) -> str:
        """Prefix applied to every key before it reaches the backend."""
        ...

    @property
    def default_ttl_minutes(self) -> float:
        """TTL used when ``set`` is called without one."""
        ...

    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or ``None``."""
        ...

    async def set(
        self, key: str, value: Any, ttl_minutes: Optional[float] = None
    ) -> None:
        """Store ``value`` under ``key``, overwriting unconditionally."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``; no-op when absent."""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether ``key`` holds a live entry."""
        ...

    async def clear(self, pattern: Optional[str] = None) -> int:
        """Remove every key in the namespace, or those containing ``pattern``."""
        ...

    async def clear_prefix(self, prefix: str) -> int:
        """Remove keys starting with ``prefix`` (namespace-relative)."""
        ...

    async def purge_expired(self) -> int:
        """Actively evict expired entries, returning how many were removed."""
        ...

    async def get_statistics(self) -> CacheStatistics:
        """Return a statistics snapshot."""
        ...

    async def start(self) -> None:
        """Connect and start background maintenance."""
        ...

    async def close(self) -> None:
        """Release background tasks and connections."""
        ...
