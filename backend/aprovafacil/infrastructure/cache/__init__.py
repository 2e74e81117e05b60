"""
Cache Infrastructure Module

Concrete cache backends (in-memory and Redis) and the cache exception
hierarchy.
"""

from .exceptions import (
    CacheConfigurationException,
    CacheConnectionException,
    CacheException,
    CacheHTTPException,
    CacheOperationException,
    CacheSerializationException,
)
from .memory_cache import MemoryCacheService, MemoryStore
from .redis_cache import RedisCacheService, escape_glob

__all__ = [
    # Backends
    "MemoryCacheService",
    "MemoryStore",
    "RedisCacheService",
    "escape_glob",
    # Exceptions
    "CacheConfigurationException",
    "CacheConnectionException",
    "CacheException",
    "CacheHTTPException",
    "CacheOperationException",
    "CacheSerializationException",
]
