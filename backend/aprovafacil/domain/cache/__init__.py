"""
Cache Domain Module

Domain-Driven Design implementation for cache management.
Contains entities, value objects, service interfaces, and domain services.
"""

from .domain_services import CacheInvalidationService
from .entities import CacheEntry
from .interfaces import CacheLogger, CacheService
from .value_objects import (
    CacheDependency,
    CacheDependencyType,
    CacheKey,
    CacheProvider,
    CacheStatistics,
    CacheStatus,
    TTL,
)

__all__ = [
    "CacheDependency",
    "CacheDependencyType",
    "CacheEntry",
    "CacheInvalidationService",
    "CacheKey",
    "CacheLogger",
    "CacheProvider",
    "CacheService",
    "CacheStatistics",
    "CacheStatus",
    "TTL",
]
