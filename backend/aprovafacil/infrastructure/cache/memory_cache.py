"""
In-Memory Cache Backend

Process-local cache used in development and tests, and wherever Redis is not
configured. A ``MemoryStore`` holds the entries; ``MemoryCacheService`` is a
namespaced view over a store, so several services may share one store while
staying isolated from each other.
"""

import asyncio
import copy
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog

from ...domain.cache.entities import CacheEntry
from ...domain.cache.interfaces import CacheLogger
from ...domain.cache.value_objects import (
    CacheProvider,
    CacheStatistics,
    CacheStatus,
    TTL,
)
from .exceptions import CacheConfigurationException, CacheSerializationException

DEFAULT_NAMESPACE = "aprovafacil:"
DEFAULT_TTL_MINUTES = 60
DEFAULT_MAX_KEYS = 1000
DEFAULT_CLEANUP_INTERVAL_SECONDS = 300


class MemoryStore:
    """
    Thread-safe dictionary of cache entries keyed by full (namespaced) key.

    Expired entries are dropped lazily on access and actively by
    ``purge_expired``. When ``max_keys`` is reached, expired entries are
    evicted first, then the entry closest to expiry.
    """

    def __init__(
        self,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_keys < 1:
            raise ValueError("max_keys must be positive")
        self.max_keys = max_keys
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._namespaces: Set[str] = set()
        self._lock = threading.Lock()
        self.started_at = clock()

    def now(self) -> float:
        return self._clock()

    def register_namespace(self, namespace: str) -> None:
        """
        Claim ``namespace`` on this store.

        Services sharing a store must use the same namespace or namespaces
        that are not prefixes of one another; otherwise clearing the shorter
        one would also remove the longer one's keys.

        Raises:
            CacheConfigurationException: If ``namespace`` nests with a
                namespace already registered
        """
        with self._lock:
            for existing in self._namespaces:
                if existing != namespace and (
                    existing.startswith(namespace) or namespace.startswith(existing)
                ):
                    raise CacheConfigurationException(
                        message=(
                            f"Cache namespace '{namespace}' overlaps "
                            f"namespace '{existing}' on the same store"
                        ),
                        config_key="CACHE_KEY_PREFIX",
                        config_value=namespace,
                    )
            self._namespaces.add(namespace)

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    def set(self, key: str, value: Any, ttl: TTL) -> None:
        with self._lock:
            if ttl.seconds <= 0:
                self._entries.pop(key, None)
                return

            if key not in self._entries and len(self._entries) >= self.max_keys:
                self._evict()

            self._entries[key] = CacheEntry.create(key, value, ttl, self._clock)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def remove_matching(self, predicate: Callable[[str], bool]) -> int:
        """Remove every entry whose key satisfies ``predicate``; count live ones."""
        with self._lock:
            now = self._clock()
            matched = [key for key in self._entries if predicate(key)]
            removed = 0
            for key in matched:
                if not self._entries.pop(key).is_expired(now):
                    removed += 1
            return removed

    def purge_expired(self, prefix: str = "") -> int:
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, entry in self._entries.items()
                if key.startswith(prefix) and entry.is_expired(now)
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def live_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            now = self._clock()
            return [
                key
                for key, entry in self._entries.items()
                if key.startswith(prefix) and not entry.is_expired(now)
            ]

    def snapshot(self, prefix: str = "") -> Tuple[int, int, int]:
        """Return (live, expired, bytes) for keys under ``prefix``."""
        with self._lock:
            now = self._clock()
            live = expired = size = 0
            for key, entry in self._entries.items():
                if not key.startswith(prefix):
                    continue
                if entry.is_expired(now):
                    expired += 1
                else:
                    live += 1
                    size += entry.size_bytes
            return live, expired, size

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        if expired:
            for key in expired:
                del self._entries[key]
            return

        victim = min(self._entries.items(), key=lambda item: item[1].expires_at)[0]
        del self._entries[victim]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MemoryCacheService:
    """
    Namespaced cache over a ``MemoryStore``.

    Values go through the same JSON round trip as the Redis backend, so both
    backends return the same shapes (tuples come back as lists, non-string
    dict keys as strings) and reject the same values. Reads hand out a copy,
    so callers never share mutable state with the cache.

    Namespaces sharing a store must not be prefixes of one another; the
    store rejects such a registration.
    """

    provider = CacheProvider.MEMORY

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        namespace: str = DEFAULT_NAMESPACE,
        default_ttl_minutes: float = DEFAULT_TTL_MINUTES,
        logger: Optional[CacheLogger] = None,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ):
        TTL(default_ttl_minutes)
        self._store = store if store is not None else MemoryStore()
        self._store.register_namespace(namespace)
        self._namespace = namespace
        self._default_ttl_minutes = default_ttl_minutes
        self._logger = logger or structlog.get_logger(__name__)
        self._cleanup_interval = cleanup_interval_seconds
        self._cleanup_task: Optional[asyncio.Task] = None
        self._closed = False
        self._hits = 0
        self._misses = 0

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def default_ttl_minutes(self) -> float:
        return self._default_ttl_minutes

    @property
    def store(self) -> MemoryStore:
        return self._store

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def _relative_key(self, full_key: str) -> str:
        return full_key[len(self._namespace):]

    async def start(self) -> None:
        """Start the periodic expired-entry cleanup."""
        self._closed = False
        if self._cleanup_interval > 0 and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self._logger.info(
            "Memory cache started",
            namespace=self._namespace,
            max_keys=self._store.max_keys,
            cleanup_interval_seconds=self._cleanup_interval,
        )

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(self._full_key(key))
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return copy.deepcopy(entry.value)

    async def set(
        self, key: str, value: Any, ttl_minutes: Optional[float] = None
    ) -> None:
        ttl = TTL(self._default_ttl_minutes if ttl_minutes is None else ttl_minutes)
        try:
            stored = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise CacheSerializationException(key, original_error=e) from e
        self._store.set(self._full_key(key), stored, ttl)

    async def delete(self, key: str) -> None:
        self._store.delete(self._full_key(key))

    async def exists(self, key: str) -> bool:
        return self._store.get(self._full_key(key)) is not None

    async def clear(self, pattern: Optional[str] = None) -> int:
        """Remove all namespaced keys, or those whose key contains ``pattern``."""
        if pattern is None:
            removed = self._store.remove_matching(
                lambda full_key: full_key.startswith(self._namespace)
            )
        else:
            removed = self._store.remove_matching(
                lambda full_key: full_key.startswith(self._namespace)
                and pattern in self._relative_key(full_key)
            )

        self._logger.info(
            "Memory cache cleared",
            namespace=self._namespace,
            pattern=pattern,
            keys_removed=removed,
        )
        return removed

    async def clear_prefix(self, prefix: str) -> int:
        full_prefix = self._full_key(prefix)
        return self._store.remove_matching(
            lambda full_key: full_key.startswith(full_prefix)
        )

    async def purge_expired(self) -> int:
        removed = self._store.purge_expired(self._namespace)
        if removed:
            self._logger.info(
                "Expired memory cache entries purged",
                namespace=self._namespace,
                keys_removed=removed,
            )
        return removed

    async def keys(self) -> List[str]:
        """Live keys in this namespace, without the namespace prefix."""
        return [
            self._relative_key(full_key)
            for full_key in self._store.live_keys(self._namespace)
        ]

    async def get_statistics(self) -> CacheStatistics:
        live, expired, size = self._store.snapshot(self._namespace)
        return CacheStatistics(
            status=CacheStatus.DISCONNECTED if self._closed else CacheStatus.CONNECTED,
            provider=self.provider,
            namespace=self._namespace,
            total_keys=live,
            expired_keys=expired,
            memory_used_bytes=size,
            uptime_seconds=max(0.0, self._store.now() - self._store.started_at),
            version="memory",
            hits=self._hits,
            misses=self._misses,
        )

    async def close(self) -> None:
        self._closed = True
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._logger.info("Memory cache closed", namespace=self._namespace)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            await self.purge_expired()
