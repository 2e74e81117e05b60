"""
AprovaFácil Backend Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for cache and retry settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from typing import Optional
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )
    SERVICE_NAME: str = Field(
        default="aprovafacil-api", description="Service name used in logs and spans"
    )
    SERVICE_VERSION: str = Field(default="0.1.0", description="Service version")

    # Cache configuration
    CACHE_PROVIDER: str = Field(
        default="memory", description="Cache backend: memory or redis"
    )
    CACHE_DEFAULT_TTL: float = Field(
        default=60, gt=0, le=525600, description="Default cache TTL in minutes"
    )
    CACHE_MAX_KEYS: int = Field(
        default=1000, ge=1, description="Maximum keys kept by the memory backend"
    )
    CACHE_KEY_PREFIX: str = Field(
        default="aprovafacil:", description="Namespace prefix for every cache key"
    )
    CACHE_CLEANUP_INTERVAL_SECONDS: float = Field(
        default=300.0, gt=0, description="Memory backend expired-entry sweep interval"
    )
    CACHE_MANAGER_CLEANUP_INTERVAL_SECONDS: float = Field(
        default=1800.0, gt=0, description="Cache manager purge interval"
    )
    CACHE_SCAN_BATCH_SIZE: int = Field(
        default=100, ge=1, le=10000, description="SCAN count and delete batch size"
    )

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379", description="Redis connection URL"
    )
    REDIS_USERNAME: Optional[str] = Field(default=None, description="Redis username")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Redis password")
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis connect timeout in seconds"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis socket timeout in seconds"
    )
    REDIS_RECONNECT_INTERVAL: float = Field(
        default=1.0, gt=0, description="Initial delay between reconnect attempts"
    )
    REDIS_RECONNECT_MAX_INTERVAL: float = Field(
        default=30.0, gt=0, description="Maximum delay between reconnect attempts"
    )

    # Retry configuration
    RETRY_MAX_RETRIES: int = Field(
        default=3, ge=0, le=20, description="Default number of retries"
    )
    RETRY_INITIAL_DELAY_SECONDS: float = Field(
        default=1.0, ge=0, le=60, description="Delay before the first retry"
    )
    RETRY_MAX_DELAY_SECONDS: float = Field(
        default=30.0, ge=0, le=3600, description="Ceiling for any retry delay"
    )
    RETRY_BACKOFF_FACTOR: float = Field(
        default=2.0, ge=1.0, le=10.0, description="Delay multiplier per attempt"
    )
    RETRY_JITTER_MIN: float = Field(
        default=0.85, gt=0, le=1.0, description="Lower bound of the jitter multiplier"
    )
    RETRY_JITTER_MAX: float = Field(
        default=1.15, ge=1.0, le=2.0, description="Upper bound of the jitter multiplier"
    )

    # Development and debugging
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    @field_validator("CACHE_PROVIDER")
    @classmethod
    def validate_cache_provider(cls, v):
        """Validate cache provider value."""
        allowed = ["memory", "redis"]
        if v.lower() not in allowed:
            raise ValueError(f"CACHE_PROVIDER must be one of: {allowed}")
        return v.lower()

    @field_validator("CACHE_KEY_PREFIX")
    @classmethod
    def validate_key_prefix(cls, v):
        """Validate namespace prefix."""
        if not v:
            raise ValueError("CACHE_KEY_PREFIX cannot be empty")
        if any(char.isspace() for char in v):
            raise ValueError("CACHE_KEY_PREFIX cannot contain whitespace")
        return v

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a redis://, rediss:// or unix:// URL")
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @model_validator(mode="after")
    def validate_ranges(self) -> "Settings":
        """Validate settings that depend on each other."""
        if self.RETRY_MAX_DELAY_SECONDS < self.RETRY_INITIAL_DELAY_SECONDS:
            raise ValueError(
                "RETRY_MAX_DELAY_SECONDS must be >= RETRY_INITIAL_DELAY_SECONDS"
            )
        if self.REDIS_RECONNECT_MAX_INTERVAL < self.REDIS_RECONNECT_INTERVAL:
            raise ValueError(
                "REDIS_RECONNECT_MAX_INTERVAL must be >= REDIS_RECONNECT_INTERVAL"
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def uses_redis(self) -> bool:
        """Check if the Redis cache backend is selected."""
        return self.CACHE_PROVIDER == "redis"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
