"""
Concurso Cache Service

Caches the data behind an exam's (concurso) active dashboard: basic exam
data, handouts, mock exams, flashcards, weekly questions, statistics and the
dashboard itself. Entries live under ``concurso_active:{id}:`` so a whole
exam, or one data type of it, can be invalidated by prefix.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Union

import structlog

from ...domain.cache.interfaces import CacheLogger
from ...domain.cache.value_objects import Identifier
from .cache_manager import CacheManager

CACHE_PREFIX = "concurso_active"
DEFAULT_TTL_MINUTES = 5
BASIC_TTL_MINUTES = 10

Filters = Dict[str, Union[str, int, float, bool]]


class ConcursoDataType(str, Enum):
    """Kinds of data cached per concurso."""

    BASIC = "basic"
    APOSTILAS = "apostilas"
    SIMULADOS = "simulados"
    FLASHCARDS = "flashcards"
    QUESTOES_SEMANAIS = "questoes_semanais"
    ESTATISTICAS = "estatisticas"
    DASHBOARD = "dashboard"

    @property
    def ttl_minutes(self) -> float:
        if self is ConcursoDataType.BASIC:
            return BASIC_TTL_MINUTES
        return DEFAULT_TTL_MINUTES


def _user_filters(user_id: Optional[Identifier]) -> Optional[Filters]:
    return {"userId": str(user_id)} if user_id else None


class ConcursoCacheService:
    """
    Per-concurso cache over ``CacheManager``.

    Keys follow ``concurso_active:{concurso_id}:{data_type}``, with
    ``_{filters}`` appended when filters are given. Filters are rendered as
    compact JSON with sorted keys, so the same filters always map to the
    same key.
    """

    def __init__(
        self, cache_manager: CacheManager, logger: Optional[CacheLogger] = None
    ):
        self._cache = cache_manager
        self._logger = logger or structlog.get_logger(__name__)

    @staticmethod
    def key(
        concurso_id: Identifier,
        data_type: Union[ConcursoDataType, str],
        filters: Optional[Filters] = None,
    ) -> str:
        """
        Build the cache key for a concurso data type.

        Raises:
            ValueError: If ``data_type`` is not a known data type
        """
        data_type = ConcursoDataType(data_type)
        key = f"{CACHE_PREFIX}:{concurso_id}:{data_type.value}"
        if filters:
            key += "_" + json.dumps(filters, sort_keys=True, separators=(",", ":"))
        return key

    async def get(
        self,
        concurso_id: Identifier,
        data_type: Union[ConcursoDataType, str],
        filters: Optional[Filters] = None,
    ) -> Optional[Any]:
        return await self._cache.get(self.key(concurso_id, data_type, filters))

    async def set(
        self,
        concurso_id: Identifier,
        data_type: Union[ConcursoDataType, str],
        data: Any,
        filters: Optional[Filters] = None,
    ) -> None:
        data_type = ConcursoDataType(data_type)
        await self._cache.set(
            self.key(concurso_id, data_type, filters),
            data,
            ttl_minutes=data_type.ttl_minutes,
        )

    # Data types

    async def get_concurso_data(self, concurso_id: Identifier) -> Optional[Any]:
        return await self.get(concurso_id, ConcursoDataType.BASIC)

    async def set_concurso_data(self, concurso_id: Identifier, data: Any) -> None:
        await self.set(concurso_id, ConcursoDataType.BASIC, data)

    async def get_apostilas(
        self, concurso_id: Identifier, filters: Optional[Filters] = None
    ) -> Optional[Any]:
        return await self.get(concurso_id, ConcursoDataType.APOSTILAS, filters)

    async def set_apostilas(
        self, concurso_id: Identifier, data: Any, filters: Optional[Filters] = None
    ) -> None:
        await self.set(concurso_id, ConcursoDataType.APOSTILAS, data, filters)

    async def get_simulados(
        self, concurso_id: Identifier, filters: Optional[Filters] = None
    ) -> Optional[Any]:
        return await self.get(concurso_id, ConcursoDataType.SIMULADOS, filters)

    async def set_simulados(
        self, concurso_id: Identifier, data: Any, filters: Optional[Filters] = None
    ) -> None:
        await self.set(concurso_id, ConcursoDataType.SIMULADOS, data, filters)

    async def get_flashcards(
        self, concurso_id: Identifier, filters: Optional[Filters] = None
    ) -> Optional[Any]:
        return await self.get(concurso_id, ConcursoDataType.FLASHCARDS, filters)

    async def set_flashcards(
        self, concurso_id: Identifier, data: Any, filters: Optional[Filters] = None
    ) -> None:
        await self.set(concurso_id, ConcursoDataType.FLASHCARDS, data, filters)

    async def get_questoes_semanais(
        self, concurso_id: Identifier, filters: Optional[Filters] = None
    ) -> Optional[Any]:
        return await self.get(concurso_id, ConcursoDataType.QUESTOES_SEMANAIS, filters)

    async def set_questoes_semanais(
        self, concurso_id: Identifier, data: Any, filters: Optional[Filters] = None
    ) -> None:
        await self.set(concurso_id, ConcursoDataType.QUESTOES_SEMANAIS, data, filters)

    async def get_estatisticas(
        self, concurso_id: Identifier, user_id: Optional[Identifier] = None
    ) -> Optional[Any]:
        return await self.get(
            concurso_id, ConcursoDataType.ESTATISTICAS, _user_filters(user_id)
        )

    async def set_estatisticas(
        self, concurso_id: Identifier, data: Any, user_id: Optional[Identifier] = None
    ) -> None:
        await self.set(
            concurso_id, ConcursoDataType.ESTATISTICAS, data, _user_filters(user_id)
        )

    async def get_dashboard(
        self, concurso_id: Identifier, user_id: Optional[Identifier] = None
    ) -> Optional[Any]:
        return await self.get(
            concurso_id, ConcursoDataType.DASHBOARD, _user_filters(user_id)
        )

    async def set_dashboard(
        self, concurso_id: Identifier, data: Any, user_id: Optional[Identifier] = None
    ) -> None:
        await self.set(
            concurso_id, ConcursoDataType.DASHBOARD, data, _user_filters(user_id)
        )

    # Invalidation

    async def invalidate_concurso(self, concurso_id: Identifier) -> int:
        """Remove every cached data type of one concurso."""
        removed = await self._cache.clear_prefix(f"{CACHE_PREFIX}:{concurso_id}:")
        self._logger.info(
            "Concurso cache invalidated",
            concurso_id=str(concurso_id),
            keys_removed=removed,
        )
        return removed

    async def invalidate_data_type(
        self, concurso_id: Identifier, data_type: Union[ConcursoDataType, str]
    ) -> int:
        """Remove one data type of a concurso, across all of its filters."""
        data_type = ConcursoDataType(data_type)
        removed = await self._cache.clear_prefix(
            f"{CACHE_PREFIX}:{concurso_id}:{data_type.value}"
        )
        self._logger.info(
            "Concurso data type cache invalidated",
            concurso_id=str(concurso_id),
            data_type=data_type.value,
            keys_removed=removed,
        )
        return removed

    async def clear_all(self) -> int:
        removed = await self._cache.clear_prefix(f"{CACHE_PREFIX}:")
        self._logger.info("All concurso caches cleared", keys_removed=removed)
        return removed

    async def get_stats(self) -> Dict[str, Any]:
        statistics = await self._cache.get_statistics()
        return {"type": "concurso_cache", **statistics.to_dict()}
