"""
Unit tests for Cache Domain Layer.

Tests value objects, entities and the dependency-tracked invalidation
service.
"""

import pytest
from unittest.mock import AsyncMock
from uuid import uuid4

from aprovafacil.domain.cache.domain_services import CacheInvalidationService
from aprovafacil.domain.cache.entities import CacheEntry, estimate_size
from aprovafacil.domain.cache.interfaces import CacheService
from aprovafacil.domain.cache.value_objects import (
    CacheDependency,
    CacheDependencyType,
    CacheKey,
    CacheProvider,
    CacheStatistics,
    CacheStatus,
    TTL,
)
from aprovafacil.infrastructure.cache.exceptions import CacheConnectionException


class TestCacheKey:
    """Test CacheKey value object."""

    def test_valid_key(self):
        key = CacheKey("progresso_usuario_1")

        assert key.value == "progresso_usuario_1"
        assert str(key) == "progresso_usuario_1"

    @pytest.mark.parametrize("value", ["", "with space", "tab\tkey", "x" * 251])
    def test_invalid_keys(self, value):
        with pytest.raises(ValueError):
            CacheKey(value)

    def test_domain_key_conventions(self):
        usuario_id = uuid4()

        assert str(CacheKey.user_progress(usuario_id)) == f"progresso_usuario_{usuario_id}"
        assert str(CacheKey.simulado_result("u1", "s9")) == "resultado_simulado_u1_s9"
        assert str(CacheKey.weekly_questions(2024, 7)) == "questoes_semana_2024_7"
        assert str(CacheKey.handout_content(42)) == "conteudo_apostila_42"
        assert str(CacheKey.study_plan("u1")) == "plano_estudo_u1"

    @pytest.mark.parametrize("semana", [0, 54])
    def test_weekly_questions_rejects_invalid_week(self, semana):
        with pytest.raises(ValueError):
            CacheKey.weekly_questions(2024, semana)

    def test_build_requires_identifiers(self):
        with pytest.raises(ValueError):
            CacheKey.build("plano_estudo")
        with pytest.raises(ValueError):
            CacheKey.build("plano_estudo", "")

    def test_immutable(self):
        key = CacheKey("a")

        with pytest.raises(AttributeError):
            key.value = "b"


class TestTTL:
    """Test TTL value object."""

    def test_units(self):
        ttl = TTL.of_hours(2)

        assert ttl.minutes == 120
        assert ttl.seconds == 7200
        assert ttl.milliseconds == 7_200_000
        assert str(ttl) == "120m"

    def test_zero_allowed(self):
        assert TTL(0).seconds == 0

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            TTL(-1)

    def test_too_large_rejected(self):
        with pytest.raises(ValueError):
            TTL.of_days(366)

    def test_domain_presets(self):
        assert TTL.user_progress().minutes == 60
        assert TTL.simulado_result().minutes == 120
        assert TTL.weekly_questions().minutes == 1440
        assert TTL.handout_content().minutes == 2880
        assert TTL.study_plan().minutes == 1440
        assert TTL.dependency_map().minutes == 1440


class TestCacheDependency:
    """Test CacheDependency value object."""

    def test_key_round_trip(self):
        dependency = CacheDependency(CacheDependencyType.SIMULADO, "9")

        assert dependency.key == "simulado:9"
        assert CacheDependency.parse("simulado:9") == dependency

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            CacheDependency.parse("simulado")
        with pytest.raises(ValueError):
            CacheDependency.parse("unknown:1")

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            CacheDependency(CacheDependencyType.USER, "")


class TestCacheEntry:
    """Test CacheEntry entity."""

    def test_create_and_expire(self):
        now = [100.0]
        entry = CacheEntry.create("k", {"a": 1}, TTL(1), lambda: now[0])

        assert entry.expires_at == 160.0
        assert not entry.is_expired(159.9)
        assert entry.is_expired(160.0)
        assert entry.remaining_seconds(130.0) == 30.0
        assert entry.remaining_seconds(200.0) == 0.0

    def test_zero_ttl_is_expired_immediately(self):
        entry = CacheEntry.create("k", 1, TTL(0), lambda: 5.0)

        assert entry.is_expired(5.0)

    def test_estimate_size(self):
        assert estimate_size("key", {"a": 1}) == len("key") + len('{"a": 1}')


class TestCacheStatistics:
    """Test CacheStatistics snapshot."""

    def test_hit_rate(self):
        stats = CacheStatistics(
            status=CacheStatus.CONNECTED,
            provider=CacheProvider.MEMORY,
            namespace="aprovafacil:",
            hits=3,
            misses=1,
        )

        assert stats.hit_rate == 0.75

    def test_hit_rate_without_reads(self):
        stats = CacheStatistics.degraded(CacheProvider.REDIS, "aprovafacil:")

        assert stats.hit_rate == 0.0
        assert stats.status is CacheStatus.DISCONNECTED
        assert stats.total_keys == 0

    def test_to_dict(self):
        stats = CacheStatistics(
            status=CacheStatus.CONNECTED,
            provider=CacheProvider.REDIS,
            namespace="aprovafacil:",
            memory_used_bytes=3 * 1024 * 1024,
            hits=1,
            misses=1,
        )

        data = stats.to_dict()

        assert data["status"] == "connected"
        assert data["provider"] == "redis"
        assert data["memory_used_mb"] == 3.0
        assert data["hit_rate"] == 0.5


class TestCacheServiceProtocol:
    """Test the structural cache contract."""

    def test_memory_backend_satisfies_protocol(self, memory_cache):
        assert isinstance(memory_cache, CacheService)

    def test_redis_backend_satisfies_protocol(self, redis_connection):
        from aprovafacil.infrastructure.cache.redis_cache import RedisCacheService

        assert isinstance(RedisCacheService(redis_connection), CacheService)


class TestCacheInvalidationService:
    """Test dependency-tracked invalidation."""

    @pytest.fixture
    def invalidation(self, memory_cache, mock_logger):
        return CacheInvalidationService(memory_cache, mock_logger)

    @pytest.mark.asyncio
    async def test_register_and_invalidate_by_dependency(
        self, invalidation, memory_cache
    ):
        user = CacheDependency(CacheDependencyType.USER, "1")
        await memory_cache.set("dashboard_1", {"score": 10})
        await memory_cache.set("ranking_1", [1, 2])
        await memory_cache.set("unrelated", "keep")
        await invalidation.register_dependencies("dashboard_1", [user])
        await invalidation.register_dependencies("ranking_1", [user])

        removed = await invalidation.invalidate_by_dependency(user)

        assert removed == 2
        assert await memory_cache.get("dashboard_1") is None
        assert await memory_cache.get("ranking_1") is None
        assert await memory_cache.get("unrelated") == "keep"
        assert invalidation.dependents_of(user) == set()

    @pytest.mark.asyncio
    async def test_invalidated_keys_dropped_from_other_dependencies(
        self, invalidation, memory_cache
    ):
        user = CacheDependency(CacheDependencyType.USER, "1")
        simulado = CacheDependency(CacheDependencyType.SIMULADO, "9")
        await memory_cache.set("resultado_simulado_1_9", {"nota": 8})
        await invalidation.register_dependencies(
            "resultado_simulado_1_9", [user, simulado]
        )

        await invalidation.invalidate_by_dependency(simulado)

        assert invalidation.dependency_map == {}

    @pytest.mark.asyncio
    async def test_unknown_dependency_is_noop(self, invalidation):
        dependency = CacheDependency(CacheDependencyType.QUESTAO, "404")

        assert await invalidation.invalidate_by_dependency(dependency) == 0

    @pytest.mark.asyncio
    async def test_dependency_map_persisted_and_reloaded(
        self, invalidation, memory_cache, mock_logger
    ):
        apostila = CacheDependency(CacheDependencyType.APOSTILA, "7")
        await invalidation.register_dependencies("conteudo_apostila_7", [apostila])

        stored = await memory_cache.get(CacheInvalidationService.DEPENDENCY_MAP_KEY)
        assert stored == [["apostila:7", ["conteudo_apostila_7"]]]

        restored = CacheInvalidationService(memory_cache, mock_logger)
        assert await restored.load_dependency_map() == 1
        assert restored.dependents_of(apostila) == {"conteudo_apostila_7"}

    @pytest.mark.asyncio
    async def test_load_ignores_malformed_map(
        self, invalidation, memory_cache, mock_logger
    ):
        await memory_cache.set(CacheInvalidationService.DEPENDENCY_MAP_KEY, "garbage")

        assert await invalidation.load_dependency_map() == 0
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalidate_user_cache(self, invalidation, memory_cache):
        await memory_cache.set("progresso_usuario_1", {"pct": 40})
        await memory_cache.set("plano_estudo_1", {"semanas": 4})
        await memory_cache.set("resultado_simulado_1_9", {"nota": 7})
        await memory_cache.set("resultado_simulado_12_9", {"nota": 5})
        await memory_cache.set("progresso_usuario_12", {"pct": 90})

        await invalidation.invalidate_user_cache("1")

        assert await memory_cache.get("progresso_usuario_1") is None
        assert await memory_cache.get("plano_estudo_1") is None
        assert await memory_cache.get("resultado_simulado_1_9") is None
        assert await memory_cache.get("resultado_simulado_12_9") == {"nota": 5}
        assert await memory_cache.get("progresso_usuario_12") == {"pct": 90}

    @pytest.mark.asyncio
    async def test_invalidate_apostila_cache(self, invalidation, memory_cache):
        await memory_cache.set("conteudo_apostila_3", "texto")
        await memory_cache.set("conteudo_apostila_4", "outro")

        await invalidation.invalidate_apostila_cache("3")

        assert await memory_cache.get("conteudo_apostila_3") is None
        assert await memory_cache.get("conteudo_apostila_4") == "outro"

    @pytest.mark.asyncio
    async def test_invalidate_concurso_cache_by_pattern(
        self, invalidation, memory_cache
    ):
        await memory_cache.set("concurso_5_detalhes", {"vagas": 10})

        removed = await invalidation.invalidate_concurso_cache("5")

        assert removed == 1
        assert not await memory_cache.exists("concurso_5_detalhes")

    @pytest.mark.asyncio
    async def test_persist_failure_propagates(self, mock_logger):
        cache = AsyncMock()
        cache.set.side_effect = CacheConnectionException(operation="set")
        invalidation = CacheInvalidationService(cache, mock_logger)

        with pytest.raises(CacheConnectionException):
            await invalidation.register_dependencies(
                "k", [CacheDependency(CacheDependencyType.GLOBAL, "all")]
            )
