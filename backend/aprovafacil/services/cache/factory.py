"""
Cache Factory

Selects and builds the cache backend from configuration.
"""

from typing import Optional

import structlog
from redis.asyncio import Redis

from ...core.config import Settings
from ...domain.cache.interfaces import CacheLogger, CacheService
from ...domain.cache.value_objects import CacheProvider
from ...infrastructure.cache.exceptions import CacheConfigurationException
from ...infrastructure.cache.memory_cache import MemoryCacheService, MemoryStore
from ...infrastructure.cache.redis_cache import RedisCacheService
from ...infrastructure.redis.connection import RedisConnectionManager


def create_cache_service(
    settings: Settings,
    logger: Optional[CacheLogger] = None,
    store: Optional[MemoryStore] = None,
    redis_client: Optional[Redis] = None,
) -> CacheService:
    """
    Build the cache backend named by ``CACHE_PROVIDER``.

    The service is returned unstarted; call ``start()`` once an event loop
    is running.

    Args:
        settings: Application settings
        logger: Logger handed to the backend (structlog logger by default)
        store: Shared memory store, for the memory backend
        redis_client: Pre-built Redis client, for the redis backend

    Raises:
        CacheConfigurationException: If the provider is unknown
    """
    logger = logger or structlog.get_logger("aprovafacil.cache")

    try:
        provider = CacheProvider(settings.CACHE_PROVIDER)
    except ValueError as e:
        raise CacheConfigurationException(
            message=f"Unsupported cache provider: {settings.CACHE_PROVIDER}",
            config_key="CACHE_PROVIDER",
            config_value=settings.CACHE_PROVIDER,
        ) from e

    if provider is CacheProvider.REDIS:
        connection = RedisConnectionManager.from_settings(
            settings, logger=logger, client=redis_client
        )
        service: CacheService = RedisCacheService(
            connection,
            namespace=settings.CACHE_KEY_PREFIX,
            default_ttl_minutes=settings.CACHE_DEFAULT_TTL,
            scan_batch_size=settings.CACHE_SCAN_BATCH_SIZE,
            logger=logger,
        )
    else:
        service = MemoryCacheService(
            store=store if store is not None else MemoryStore(settings.CACHE_MAX_KEYS),
            namespace=settings.CACHE_KEY_PREFIX,
            default_ttl_minutes=settings.CACHE_DEFAULT_TTL,
            logger=logger,
            cleanup_interval_seconds=settings.CACHE_CLEANUP_INTERVAL_SECONDS,
        )

    logger.info(
        "Cache service created",
        provider=provider.value,
        namespace=settings.CACHE_KEY_PREFIX,
        default_ttl_minutes=settings.CACHE_DEFAULT_TTL,
    )
    return service
