"""
Cache Services

Backend selection, the application-facing cache manager, read-through
repository caching and the per-concurso dashboard cache.
"""

from .cache_manager import CacheManager
from .cached_repository import CachedRepository, create_cached_repository
from .concurso_cache import ConcursoCacheService, ConcursoDataType
from .factory import create_cache_service

__all__ = [
    "CacheManager",
    "CachedRepository",
    "ConcursoCacheService",
    "ConcursoDataType",
    "create_cache_service",
    "create_cached_repository",
]
