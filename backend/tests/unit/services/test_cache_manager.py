"""
Unit tests for Cache Manager Service.

Tests the high-level cache management service that orchestrates the cache
backend, dependency-tracked invalidation and the domain cache helpers.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from aprovafacil.domain.cache.value_objects import (
    CacheDependency,
    CacheDependencyType,
    CacheProvider,
    CacheStatus,
)
from aprovafacil.infrastructure.cache.exceptions import (
    CacheConfigurationException,
    CacheConnectionException,
    CacheOperationException,
)
from aprovafacil.infrastructure.cache.memory_cache import MemoryCacheService
from aprovafacil.infrastructure.cache.redis_cache import RedisCacheService
from aprovafacil.services.cache.cache_manager import CacheManager
from aprovafacil.services.cache.factory import create_cache_service


class TestCacheManager:
    """Test CacheManager service."""

    @pytest.fixture
    def cache_manager(self, memory_cache, mock_logger):
        """Create cache manager over the memory backend, without cleanup task."""
        return CacheManager(memory_cache, mock_logger, cleanup_interval_seconds=0)

    @pytest.fixture
    def sample_progress(self):
        """Sample user progress payload."""
        return {
            "usuario_id": str(uuid4()),
            "questoes_respondidas": 120,
            "acertos": 87,
            "disciplinas": ["portugues", "raciocinio_logico"],
        }

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache_manager):
        await cache_manager.set("k", {"a": 1}, ttl_minutes=5)

        assert await cache_manager.get("k") == {"a": 1}
        assert await cache_manager.exists("k") is True

        await cache_manager.delete("k")
        assert await cache_manager.exists("k") is False

    @pytest.mark.asyncio
    async def test_get_or_set_returns_cached_value(self, cache_manager):
        await cache_manager.set("k", "cached")
        factory = AsyncMock(return_value="computed")

        assert await cache_manager.get_or_set("k", factory) == "cached"
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_or_set_computes_and_stores(self, cache_manager, clock):
        factory = AsyncMock(return_value={"ranking": [1, 2]})

        value = await cache_manager.get_or_set("ranking", factory, ttl_minutes=1)

        assert value == {"ranking": [1, 2]}
        assert await cache_manager.get("ranking") == {"ranking": [1, 2]}
        factory.assert_awaited_once()

        clock.advance(61)
        assert await cache_manager.get("ranking") is None

    @pytest.mark.asyncio
    async def test_get_or_set_does_not_cache_none(self, cache_manager):
        factory = AsyncMock(return_value=None)

        assert await cache_manager.get_or_set("k", factory) is None
        assert await cache_manager.exists("k") is False

    @pytest.mark.asyncio
    async def test_get_or_set_factory_error_propagates(self, cache_manager):
        factory = AsyncMock(side_effect=LookupError("not found"))

        with pytest.raises(LookupError):
            await cache_manager.get_or_set("k", factory)

    @pytest.mark.asyncio
    async def test_get_or_set_survives_store_failure(self, mock_logger):
        cache = AsyncMock()
        cache.get.return_value = None
        cache.set.side_effect = CacheConnectionException(operation="set")
        cache_manager = CacheManager(cache, mock_logger, cleanup_interval_seconds=0)

        value = await cache_manager.get_or_set("k", AsyncMock(return_value=42))

        assert value == 42
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.args[0] == "Failed to cache computed value"

    @pytest.mark.asyncio
    async def test_set_failure_propagates(self, mock_logger):
        cache = AsyncMock()
        cache.set.side_effect = CacheOperationException("set", key="k")
        cache_manager = CacheManager(cache, mock_logger, cleanup_interval_seconds=0)

        with pytest.raises(CacheOperationException):
            await cache_manager.set("k", 1)

    @pytest.mark.asyncio
    async def test_set_with_dependencies_invalidates(self, cache_manager):
        concurso = CacheDependency(CacheDependencyType.CONCURSO, "5")
        await cache_manager.set("edital_resumo_5", "resumo", dependencies=[concurso])
        await cache_manager.set("vagas_5", 100, dependencies=[concurso])

        removed = await cache_manager.invalidate(concurso)

        assert removed == 2
        assert await cache_manager.get("edital_resumo_5") is None
        assert await cache_manager.get("vagas_5") is None

    @pytest.mark.asyncio
    async def test_user_progress_helpers(self, cache_manager, sample_progress, clock):
        usuario_id = sample_progress["usuario_id"]

        await cache_manager.cache_user_progress(usuario_id, sample_progress)

        assert await cache_manager.get_user_progress(usuario_id) == sample_progress
        assert await cache_manager.get(f"progresso_usuario_{usuario_id}") is not None

        clock.advance(60 * 60)
        assert await cache_manager.get_user_progress(usuario_id) is None

    @pytest.mark.asyncio
    async def test_domain_helper_ttls(self, cache_manager, clock):
        await cache_manager.cache_simulado_result("1", "9", {"nota": 8.5})
        await cache_manager.cache_weekly_questions(2024, 7, [101, 102])
        await cache_manager.cache_handout_content("3", "conteudo")
        await cache_manager.cache_study_plan("1", {"semanas": 12})

        clock.advance(2 * 60 * 60 - 1)
        assert await cache_manager.get_simulado_result("1", "9") == {"nota": 8.5}

        clock.advance(1)
        assert await cache_manager.get_simulado_result("1", "9") is None
        assert await cache_manager.get_weekly_questions(2024, 7) == [101, 102]
        assert await cache_manager.get_study_plan("1") == {"semanas": 12}

        clock.advance(22 * 60 * 60)
        assert await cache_manager.get_weekly_questions(2024, 7) is None
        assert await cache_manager.get_study_plan("1") is None
        assert await cache_manager.get_handout_content("3") == "conteudo"

        clock.advance(24 * 60 * 60)
        assert await cache_manager.get_handout_content("3") is None

    @pytest.mark.asyncio
    async def test_invalidate_simulado_removes_results(self, cache_manager):
        await cache_manager.cache_simulado_result("1", "9", {"nota": 8})
        await cache_manager.cache_simulado_result("2", "9", {"nota": 6})
        await cache_manager.cache_simulado_result("1", "10", {"nota": 7})

        await cache_manager.invalidate_entity(CacheDependencyType.SIMULADO, "9")

        assert await cache_manager.get_simulado_result("1", "9") is None
        assert await cache_manager.get_simulado_result("2", "9") is None
        assert await cache_manager.get_simulado_result("1", "10") == {"nota": 7}

    @pytest.mark.asyncio
    async def test_invalidate_user_removes_user_entries(self, cache_manager):
        await cache_manager.cache_user_progress("1", {"pct": 10})
        await cache_manager.cache_study_plan("1", {"semanas": 4})
        await cache_manager.cache_simulado_result("1", "9", {"nota": 8})
        await cache_manager.cache_user_progress("2", {"pct": 50})

        removed = await cache_manager.invalidate_entity(CacheDependencyType.USER, "1")

        assert removed >= 3
        assert await cache_manager.get_user_progress("1") is None
        assert await cache_manager.get_study_plan("1") is None
        assert await cache_manager.get_simulado_result("1", "9") is None
        assert await cache_manager.get_user_progress("2") == {"pct": 50}

    @pytest.mark.asyncio
    async def test_invalidate_apostila_removes_handout(self, cache_manager):
        await cache_manager.cache_handout_content("3", "conteudo")

        await cache_manager.invalidate_entity(CacheDependencyType.APOSTILA, "3")

        assert await cache_manager.get_handout_content("3") is None

    @pytest.mark.asyncio
    async def test_invalidate_entity_falls_back_to_dependency(self, cache_manager):
        questao = CacheDependency(CacheDependencyType.QUESTAO, "77")
        await cache_manager.set("comentario_questao_77", "texto", dependencies=[questao])

        removed = await cache_manager.invalidate_entity(CacheDependencyType.QUESTAO, "77")

        assert removed == 1
        assert await cache_manager.get("comentario_questao_77") is None

    @pytest.mark.asyncio
    async def test_clear_and_clear_prefix(self, cache_manager):
        await cache_manager.set("questoes_semana_2024_1", [1])
        await cache_manager.set("questoes_semana_2024_2", [2])
        await cache_manager.set("plano_estudo_1", {})

        assert await cache_manager.clear_prefix("questoes_semana_") == 2
        assert await cache_manager.clear() == 1

    @pytest.mark.asyncio
    async def test_get_statistics(self, cache_manager):
        await cache_manager.set("k", 1)

        stats = await cache_manager.get_statistics()

        assert stats.status is CacheStatus.CONNECTED
        assert stats.total_keys == 1

    def test_get_config(self, cache_manager):
        config = cache_manager.get_config()

        assert config["provider"] is CacheProvider.MEMORY
        assert config["namespace"] == "aprovafacil:"
        assert config["default_ttl_minutes"] == 60
        assert config["cleanup_interval_seconds"] == 0
        assert config["domain_ttl_minutes"] == {
            "user_progress": 60,
            "simulado_result": 120,
            "weekly_questions": 1440,
            "handout_content": 2880,
            "study_plan": 1440,
        }

    @pytest.mark.asyncio
    async def test_cleanup_expired_entries(self, cache_manager, clock, mock_logger):
        await cache_manager.set("short", 1, ttl_minutes=1)
        await cache_manager.set("long", 2, ttl_minutes=10)
        clock.advance(120)

        assert await cache_manager.cleanup_expired_entries() == 1
        mock_logger.info.assert_any_call(
            "Cache cleanup removed expired entries", removed=1
        )

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_logged(self, mock_logger):
        cache = AsyncMock()
        cache.purge_expired.side_effect = CacheConnectionException(
            operation="purge_expired"
        )
        cache_manager = CacheManager(cache, mock_logger, cleanup_interval_seconds=0)

        assert await cache_manager.cleanup_expired_entries() == 0
        mock_logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_restores_dependency_map(self, memory_cache, mock_logger):
        first = CacheManager(memory_cache, mock_logger, cleanup_interval_seconds=0)
        await first.cache_study_plan("1", {"semanas": 4})

        second = CacheManager(memory_cache, mock_logger, cleanup_interval_seconds=0)
        await second.start()

        user = CacheDependency(CacheDependencyType.USER, "1")
        assert second.invalidation.dependents_of(user) == {"plano_estudo_1"}
        await second.close()

    @pytest.mark.asyncio
    async def test_periodic_cleanup(
        self, memory_cache, memory_store, mock_logger, clock
    ):
        cache_manager = CacheManager(
            memory_cache, mock_logger, cleanup_interval_seconds=0.01
        )
        await cache_manager.set("k", 1, ttl_minutes=1)
        clock.advance(61)

        await cache_manager.start()
        try:
            for _ in range(100):
                if len(memory_store) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cache_manager.close()

        assert len(memory_store) == 0
        stats = await memory_cache.get_statistics()
        assert stats.status is CacheStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_releases_backend(self, mock_logger):
        cache = AsyncMock()
        cache.get.return_value = None
        cache_manager = CacheManager(cache, mock_logger, cleanup_interval_seconds=0)

        await cache_manager.start()
        await cache_manager.close()

        cache.start.assert_awaited_once()
        cache.close.assert_awaited_once()


class TestCacheFactory:
    """Test backend selection from settings."""

    def test_memory_backend(self, make_settings, mock_logger):
        settings = make_settings(CACHE_KEY_PREFIX="app1:", CACHE_DEFAULT_TTL=15)

        service = create_cache_service(settings, logger=mock_logger)

        assert isinstance(service, MemoryCacheService)
        assert service.namespace == "app1:"
        assert service.default_ttl_minutes == 15

    def test_redis_backend(self, make_settings, mock_logger, fake_redis):
        settings = make_settings(CACHE_PROVIDER="redis", CACHE_SCAN_BATCH_SIZE=50)

        service = create_cache_service(
            settings, logger=mock_logger, redis_client=fake_redis
        )

        assert isinstance(service, RedisCacheService)
        assert service.connection.client is fake_redis

    def test_unknown_provider(self, mock_logger):
        settings = MagicMock(CACHE_PROVIDER="memcached")

        with pytest.raises(CacheConfigurationException) as exc_info:
            create_cache_service(settings, logger=mock_logger)

        assert exc_info.value.details["config_key"] == "CACHE_PROVIDER"

    def test_invalid_provider_rejected_by_settings(self, make_settings):
        with pytest.raises(ValueError):
            make_settings(CACHE_PROVIDER="memcached")

    @pytest.mark.asyncio
    async def test_manager_from_settings(self, make_settings, mock_logger, memory_store):
        settings = make_settings(CACHE_MANAGER_CLEANUP_INTERVAL_SECONDS=600)

        cache_manager = CacheManager.from_settings(
            settings, logger=mock_logger, store=memory_store
        )
        await cache_manager.start()
        await cache_manager.set("k", 1)

        assert cache_manager.get_config()["cleanup_interval_seconds"] == 600
        assert len(memory_store) == 1
        await cache_manager.close()
