"""
Cache Value Objects

Immutable value objects for the cache domain.
Provides type safety for keys, TTLs, invalidation dependencies and
statistics snapshots.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CacheProvider(str, Enum):
    """Available cache backends."""

    MEMORY = "memory"
    REDIS = "redis"


class CacheStatus(str, Enum):
    """Backend connectivity status reported in statistics."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class CacheDependencyType(str, Enum):
    """Entity types a cache entry can depend on."""

    USER = "user"
    CONCURSO = "concurso"
    SIMULADO = "simulado"
    QUESTAO = "questao"
    APOSTILA = "apostila"
    CATEGORIA = "categoria"
    PLANO = "plano"
    GLOBAL = "global"


Identifier = Union[str, int, UUID]


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Enforces the key naming convention shared with data already cached by
    the platform: ``{domain}_{id}`` or ``{domain}_{id1}_{id2}``.
    """

    value: str

    MAX_LENGTH = 250

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise ValueError("Cache key cannot be empty")

        if len(self.value) > self.MAX_LENGTH:
            raise ValueError(f"Cache key too long (max {self.MAX_LENGTH} characters)")

        if any(char.isspace() for char in self.value):
            raise ValueError("Cache key cannot contain whitespace")

    @classmethod
    def build(cls, domain: str, *identifiers: Identifier) -> "CacheKey":
        """Join a domain name and identifiers with underscores."""
        if not identifiers:
            raise ValueError("At least one identifier is required")
        parts = [domain, *(str(identifier) for identifier in identifiers)]
        if any(part == "" for part in parts):
            raise ValueError("Cache key parts cannot be empty")
        return cls("_".join(parts))

    @classmethod
    def user_progress(cls, usuario_id: Identifier) -> "CacheKey":
        """Create user progress cache key."""
        return cls.build("progresso_usuario", usuario_id)

    @classmethod
    def simulado_result(
        cls, usuario_id: Identifier, simulado_id: Identifier
    ) -> "CacheKey":
        """Create mock exam result cache key."""
        return cls.build("resultado_simulado", usuario_id, simulado_id)

    @classmethod
    def weekly_questions(cls, ano: int, semana: int) -> "CacheKey":
        """Create weekly questions cache key."""
        if not 1 <= semana <= 53:
            raise ValueError("Week number must be between 1 and 53")
        return cls.build("questoes_semana", ano, semana)

    @classmethod
    def handout_content(cls, apostila_id: Identifier) -> "CacheKey":
        """Create handout (apostila) content cache key."""
        return cls.build("conteudo_apostila", apostila_id)

    @classmethod
    def study_plan(cls, usuario_id: Identifier) -> "CacheKey":
        """Create study plan cache key."""
        return cls.build("plano_estudo", usuario_id)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TTL:
    """
    Time To Live value object for cache expiration, in minutes.

    Zero is allowed and means the entry expires immediately.
    """

    minutes: float

    def __post_init__(self) -> None:
        """Validate TTL value."""
        if self.minutes < 0:
            raise ValueError("TTL cannot be negative")
        if self.minutes > 60 * 24 * 365:  # Max 1 year
            raise ValueError("TTL too large (max 1 year)")

    @classmethod
    def of_minutes(cls, minutes: float) -> "TTL":
        """Create TTL from minutes."""
        return cls(minutes)

    @classmethod
    def of_hours(cls, hours: float) -> "TTL":
        """Create TTL from hours."""
        return cls(hours * 60)

    @classmethod
    def of_days(cls, days: float) -> "TTL":
        """Create TTL from days."""
        return cls(days * 60 * 24)

    @property
    def seconds(self) -> float:
        return self.minutes * 60

    @property
    def milliseconds(self) -> int:
        return int(self.minutes * 60_000)

    # Domain TTL presets
    @classmethod
    def user_progress(cls) -> "TTL":
        """User progress TTL (1 hour)."""
        return cls.of_hours(1)

    @classmethod
    def simulado_result(cls) -> "TTL":
        """Mock exam result TTL (2 hours)."""
        return cls.of_hours(2)

    @classmethod
    def weekly_questions(cls) -> "TTL":
        """Weekly questions TTL (24 hours)."""
        return cls.of_days(1)

    @classmethod
    def handout_content(cls) -> "TTL":
        """Handout content TTL (48 hours)."""
        return cls.of_days(2)

    @classmethod
    def study_plan(cls) -> "TTL":
        """Study plan TTL (24 hours)."""
        return cls.of_days(1)

    @classmethod
    def dependency_map(cls) -> "TTL":
        """Invalidation dependency map TTL (24 hours)."""
        return cls.of_days(1)

    def __str__(self) -> str:
        return f"{self.minutes:g}m"


@dataclass(frozen=True)
class CacheDependency:
    """An entity that cached values depend on."""

    type: CacheDependencyType
    id: str

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Dependency id cannot be empty")

    @property
    def key(self) -> str:
        """Key of this dependency in the dependency map."""
        return f"{self.type.value}:{self.id}"

    @classmethod
    def parse(cls, key: str) -> "CacheDependency":
        """Parse a ``{type}:{id}`` dependency map key."""
        type_value, separator, identifier = key.partition(":")
        if not separator:
            raise ValueError(f"Invalid dependency key: {key}")
        return cls(CacheDependencyType(type_value), identifier)

    def __str__(self) -> str:
        return self.key


class CacheStatistics(BaseModel):
    """Read-only statistics snapshot, computed on demand."""

    status: CacheStatus = Field(..., description="Backend connectivity status")
    provider: CacheProvider = Field(..., description="Backend in use")
    namespace: str = Field(..., description="Key namespace prefix")
    total_keys: int = Field(0, ge=0, description="Live keys in the namespace")
    expired_keys: int = Field(
        0, ge=0, description="Expired keys not yet evicted (memory backend)"
    )
    memory_used_bytes: int = Field(0, ge=0, description="Approximate memory usage")
    connected_clients: int = Field(
        0, ge=0, description="Clients connected to the backend (redis only)"
    )
    uptime_seconds: float = Field(0.0, ge=0, description="Backend uptime")
    version: str = Field("unknown", description="Backend version")
    hits: int = Field(0, ge=0, description="Reads served from the cache")
    misses: int = Field(0, ge=0, description="Reads that missed")
    error: Optional[str] = Field(None, description="Error message if degraded")

    @property
    def hit_rate(self) -> float:
        """Fraction of reads served from the cache."""
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    @property
    def memory_used_mb(self) -> float:
        return round(self.memory_used_bytes / (1024 * 1024), 2)

    @classmethod
    def degraded(
        cls,
        provider: CacheProvider,
        namespace: str,
        status: CacheStatus = CacheStatus.DISCONNECTED,
        error: Optional[str] = None,
        hits: int = 0,
        misses: int = 0,
    ) -> "CacheStatistics":
        """Zeroed snapshot for an unreachable backend."""
        return cls(
            status=status,
            provider=provider,
            namespace=namespace,
            hits=hits,
            misses=misses,
            error=error,
        )

    def to_dict(self) -> dict:
        """Serializable form including derived fields."""
        data = self.model_dump(mode="json")
        data["hit_rate"] = round(self.hit_rate, 4)
        data["memory_used_mb"] = self.memory_used_mb
        return data
