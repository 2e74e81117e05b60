"""
Redis Cache Backend

Namespaced, JSON-serialized cache on top of a shared Redis server. Every key
is prefixed with the namespace so several applications can share one server.
Pattern invalidation walks the namespace with SCAN in bounded batches.
"""

import json
from typing import Any, AsyncIterator, List, Optional

import structlog
from opentelemetry import trace
from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from ...domain.cache.interfaces import CacheLogger
from ...domain.cache.value_objects import (
    CacheProvider,
    CacheStatistics,
    CacheStatus,
    TTL,
)
from ..redis.connection import RedisConnectionManager
from .exceptions import (
    CacheConnectionException,
    CacheException,
    CacheOperationException,
    CacheSerializationException,
)

tracer = trace.get_tracer(__name__)

DEFAULT_NAMESPACE = "aprovafacil:"
DEFAULT_TTL_MINUTES = 60
DEFAULT_SCAN_BATCH_SIZE = 100

GLOB_SPECIAL_CHARACTERS = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis MATCH glob metacharacters so ``value`` matches literally."""
    return "".join(
        f"\\{char}" if char in GLOB_SPECIAL_CHARACTERS else char for char in value
    )


class RedisCacheService:
    """
    Cache service backed by Redis.

    Reads degrade to a miss while the server is unreachable; writes and
    invalidations raise ``CacheException`` subclasses. Connection-level
    failures hand control to the connection manager's reconnect loop.

    Services sharing a Redis database must not use namespaces that are
    prefixes of one another: ``clear()`` on ``app:`` also removes keys
    written under ``app:sub:``. This cannot be checked across processes.
    """

    provider = CacheProvider.REDIS

    def __init__(
        self,
        connection: RedisConnectionManager,
        namespace: str = DEFAULT_NAMESPACE,
        default_ttl_minutes: float = DEFAULT_TTL_MINUTES,
        scan_batch_size: int = DEFAULT_SCAN_BATCH_SIZE,
        logger: Optional[CacheLogger] = None,
    ):
        TTL(default_ttl_minutes)
        if scan_batch_size < 1:
            raise ValueError("scan_batch_size must be positive")
        self._connection = connection
        self._namespace = namespace
        self._default_ttl_minutes = default_ttl_minutes
        self._scan_batch_size = scan_batch_size
        self._logger = logger or structlog.get_logger(__name__)
        self._hits = 0
        self._misses = 0

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def default_ttl_minutes(self) -> float:
        return self._default_ttl_minutes

    @property
    def connection(self) -> RedisConnectionManager:
        return self._connection

    @property
    def _client(self) -> Redis:
        return self._connection.client

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def _relative_key(self, full_key: str) -> str:
        return full_key[len(self._namespace):]

    async def start(self) -> None:
        await self._connection.connect()

    async def get(self, key: str) -> Optional[Any]:
        with tracer.start_as_current_span("redis_cache.get") as span:
            span.set_attribute("cache.key", key)

            if not self._connection.is_connected:
                span.set_attribute("cache.hit", False)
                self._misses += 1
                return None

            try:
                raw = await self._client.get(self._full_key(key))
            except RedisError as e:
                self._logger.error("Redis cache read failed", key=key, error=str(e))
                self._record_failure(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                self._misses += 1
                return None

            if raw is None:
                span.set_attribute("cache.hit", False)
                self._misses += 1
                return None

            try:
                value = json.loads(raw)
            except ValueError as e:
                self._logger.warning(
                    "Discarding undecodable cache value", key=key, error=str(e)
                )
                self._misses += 1
                return None

            span.set_attribute("cache.hit", True)
            self._hits += 1
            return value

    async def set(
        self, key: str, value: Any, ttl_minutes: Optional[float] = None
    ) -> None:
        ttl = TTL(self._default_ttl_minutes if ttl_minutes is None else ttl_minutes)

        with tracer.start_as_current_span("redis_cache.set") as span:
            span.set_attribute("cache.key", key)
            span.set_attribute("cache.ttl_minutes", ttl.minutes)

            try:
                payload = json.dumps(value)
            except (TypeError, ValueError) as e:
                raise CacheSerializationException(key, original_error=e) from e

            self._ensure_connected("set")
            try:
                if ttl.milliseconds <= 0:
                    await self._client.delete(self._full_key(key))
                else:
                    await self._client.set(
                        self._full_key(key), payload, px=ttl.milliseconds
                    )
            except RedisError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise self._failure("set", e, key) from e

    async def delete(self, key: str) -> None:
        with tracer.start_as_current_span("redis_cache.delete") as span:
            span.set_attribute("cache.key", key)

            self._ensure_connected("delete")
            try:
                await self._client.delete(self._full_key(key))
            except RedisError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise self._failure("delete", e, key) from e

    async def exists(self, key: str) -> bool:
        if not self._connection.is_connected:
            return False

        try:
            return bool(await self._client.exists(self._full_key(key)))
        except RedisError as e:
            self._logger.error("Redis cache exists failed", key=key, error=str(e))
            self._record_failure(e)
            return False

    async def clear(self, pattern: Optional[str] = None) -> int:
        """Remove all namespaced keys, or those whose key contains ``pattern``."""
        namespace = escape_glob(self._namespace)
        if pattern is None:
            match = f"{namespace}*"
        else:
            match = f"{namespace}*{escape_glob(pattern)}*"

        with tracer.start_as_current_span("redis_cache.clear") as span:
            span.set_attribute("cache.pattern", pattern or "*")
            removed = await self._delete_matching(match, "clear")
            span.set_attribute("cache.keys_removed", removed)

        self._logger.info(
            "Redis cache cleared",
            namespace=self._namespace,
            pattern=pattern,
            keys_removed=removed,
        )
        return removed

    async def clear_prefix(self, prefix: str) -> int:
        match = f"{escape_glob(self._full_key(prefix))}*"
        with tracer.start_as_current_span("redis_cache.clear_prefix") as span:
            span.set_attribute("cache.prefix", prefix)
            return await self._delete_matching(match, "clear_prefix")

    async def purge_expired(self) -> int:
        """Redis expires keys natively; nothing to purge."""
        return 0

    async def keys(self) -> List[str]:
        """Keys in this namespace, without the namespace prefix."""
        self._ensure_connected("keys")
        try:
            return [
                self._relative_key(full_key)
                async for full_key in self._scan(f"{escape_glob(self._namespace)}*")
            ]
        except RedisError as e:
            raise self._failure("keys", e) from e

    async def get_statistics(self) -> CacheStatistics:
        if not self._connection.is_connected:
            return CacheStatistics.degraded(
                self.provider, self._namespace, hits=self._hits, misses=self._misses
            )

        try:
            info = await self._client.info()
            total_keys = 0
            async for _ in self._scan(f"{escape_glob(self._namespace)}*"):
                total_keys += 1
        except RedisError as e:
            self._logger.error("Failed to collect Redis statistics", error=str(e))
            self._record_failure(e)
            return CacheStatistics.degraded(
                self.provider,
                self._namespace,
                status=CacheStatus.ERROR,
                error=str(e),
                hits=self._hits,
                misses=self._misses,
            )

        return CacheStatistics(
            status=CacheStatus.CONNECTED,
            provider=self.provider,
            namespace=self._namespace,
            total_keys=total_keys,
            memory_used_bytes=int(info.get("used_memory", 0)),
            connected_clients=int(info.get("connected_clients", 0)),
            uptime_seconds=float(info.get("uptime_in_seconds", 0)),
            version=str(info.get("redis_version", "unknown")),
            hits=self._hits,
            misses=self._misses,
        )

    async def close(self) -> None:
        await self._connection.close()

    async def _delete_matching(self, match: str, operation: str) -> int:
        self._ensure_connected(operation)

        removed = 0
        batch: List[str] = []
        try:
            async for full_key in self._scan(match):
                batch.append(full_key)
                if len(batch) >= self._scan_batch_size:
                    removed += await self._client.delete(*batch)
                    batch = []
            if batch:
                removed += await self._client.delete(*batch)
        except RedisError as e:
            raise self._failure(operation, e) from e

        return removed

    def _scan(self, match: str) -> AsyncIterator[str]:
        return self._client.scan_iter(match=match, count=self._scan_batch_size)

    def _ensure_connected(self, operation: str) -> None:
        if not self._connection.is_connected:
            raise CacheConnectionException(
                message="Redis cache is not connected", operation=operation
            )

    def _record_failure(self, error: RedisError) -> None:
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            self._connection.mark_disconnected(error)

    def _failure(
        self, operation: str, error: RedisError, key: Optional[str] = None
    ) -> CacheException:
        self._logger.error(
            "Redis cache operation failed",
            operation=operation,
            key=key,
            error=str(error),
        )
        self._record_failure(error)
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            return CacheConnectionException(
                message="Redis connection lost",
                operation=operation,
                original_error=error,
            )
        return CacheOperationException(operation, key=key, original_error=error)
