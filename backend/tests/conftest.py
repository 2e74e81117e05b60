"""
Main pytest configuration for backend tests.

Fixtures for settings, a controllable clock, the in-memory cache backend and
an in-process async Redis double for the Redis backend.
"""

import os
import re
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

# Set test environment variables before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["CACHE_PROVIDER"] = "memory"
os.environ["LOG_LEVEL"] = "DEBUG"

from aprovafacil.core.config import Settings
from aprovafacil.infrastructure.cache.memory_cache import (
    MemoryCacheService,
    MemoryStore,
)
from aprovafacil.infrastructure.cache.redis_cache import RedisCacheService
from aprovafacil.infrastructure.redis.connection import RedisConnectionManager


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a Redis MATCH glob (with backslash escapes) to a regex."""
    parts: List[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\" and index + 1 < len(pattern):
            parts.append(re.escape(pattern[index + 1]))
            index += 2
            continue
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[":
            end = pattern.find("]", index + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                parts.append(pattern[index : end + 1])
                index = end
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("".join(parts), re.DOTALL)


class FakeRedis:
    """
    In-process stand-in for ``redis.asyncio.Redis``.

    Implements the commands the cache backend issues. Set ``fail_with`` to
    make every command raise that error, simulating an unreachable server.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or FakeClock()
        self.data: Dict[str, Tuple[str, Optional[float]]] = {}
        self.fail_with: Optional[Exception] = None
        self.scan_calls: List[Dict[str, Any]] = []
        self.delete_calls: List[Tuple[str, ...]] = []
        self.closed = False

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _live(self, key: str) -> bool:
        item = self.data.get(key)
        if item is None:
            return False
        expires_at = item[1]
        if expires_at is not None and self.clock() >= expires_at:
            del self.data[key]
            return False
        return True

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.data[key][0] if self._live(key) else None

    async def set(self, key: str, value: str, px: Optional[int] = None) -> bool:
        self._check()
        expires_at = self.clock() + px / 1000 if px is not None else None
        self.data[key] = (value, expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        self.delete_calls.append(keys)
        removed = 0
        for key in keys:
            if self._live(key):
                removed += 1
            self.data.pop(key, None)
        return removed

    async def exists(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self._live(key))

    async def scan_iter(
        self, match: Optional[str] = None, count: Optional[int] = None
    ) -> AsyncIterator[str]:
        self._check()
        self.scan_calls.append({"match": match, "count": count})
        regex = glob_to_regex(match or "*")
        for key in list(self.data):
            if regex.fullmatch(key) and self._live(key):
                yield key

    async def info(self) -> Dict[str, Any]:
        self._check()
        return {
            "redis_version": "7.2.4",
            "used_memory": 2 * 1024 * 1024,
            "connected_clients": 3,
            "uptime_in_seconds": 3600,
        }

    async def aclose(self) -> None:
        self.closed = True

    def raw_keys(self) -> List[str]:
        return [key for key in list(self.data) if self._live(key)]


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings with overrides, ignoring any .env file."""

    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {"ENVIRONMENT": "test", "CACHE_PROVIDER": "memory"}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def mock_logger() -> MagicMock:
    """Logger double recording info/warning/error calls."""
    return MagicMock()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock) -> MemoryStore:
    return MemoryStore(max_keys=100, clock=clock)


@pytest.fixture
def memory_cache(memory_store, mock_logger) -> MemoryCacheService:
    """Memory cache without the background cleanup task."""
    return MemoryCacheService(
        store=memory_store,
        namespace="aprovafacil:",
        default_ttl_minutes=60,
        logger=mock_logger,
        cleanup_interval_seconds=0,
    )


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def redis_connection(fake_redis, mock_logger) -> RedisConnectionManager:
    return RedisConnectionManager(
        url="redis://localhost:6379",
        reconnect_interval=0.01,
        reconnect_max_interval=0.05,
        logger=mock_logger,
        client=fake_redis,
    )


@pytest_asyncio.fixture
async def redis_cache(redis_connection, mock_logger):
    """Connected Redis cache over the in-process double."""
    cache = RedisCacheService(
        redis_connection,
        namespace="aprovafacil:",
        default_ttl_minutes=60,
        scan_batch_size=100,
        logger=mock_logger,
    )
    await cache.start()
    yield cache
    await cache.close()
