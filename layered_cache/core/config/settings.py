"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
layered cache. The composition root reads these settings once and builds an
explicit CacheEngine from them.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from layered_cache.core.config.constants import (
    DEFAULT_BACKING_STORE_TIMEOUT_MS,
    DEFAULT_LOCAL_CAPACITY_BYTES,
    DEFAULT_MAX_TTL,
    DEFAULT_MIN_TTL,
    DEFAULT_REFRESH_TIMEOUT_SECONDS,
    DEFAULT_TTL_SECONDS,
    BackendType,
    EvictionPolicy,
)


class RedisSettings(BaseSettings):
    """
    Redis configuration for the distributed backing store.

    Only used when CACHE_BACKEND=redis.
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: float = Field(default=1.0, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=1.0, description="Connect timeout in seconds")
    REDIS_KEY_PREFIX: str = Field(default="lcache", description="Prefix for every cache key")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Cache engine configuration.

    Mirrors the engine construction surface; converted into a validated
    CacheEngineConfig by the composition root.
    """

    CACHE_NAME: str = Field(default="default", description="Cache name used in metrics labels")
    CACHE_LOCAL_CAPACITY_BYTES: int = Field(default=DEFAULT_LOCAL_CAPACITY_BYTES)
    CACHE_DEFAULT_TTL_SECONDS: int = Field(default=DEFAULT_TTL_SECONDS)
    CACHE_EVICTION_POLICY: EvictionPolicy = Field(default=EvictionPolicy.LRU)
    CACHE_BACKEND: BackendType = Field(default=BackendType.NONE)
    CACHE_BACKING_STORE_TIMEOUT_MS: int = Field(default=DEFAULT_BACKING_STORE_TIMEOUT_MS)
    CACHE_STALE_GRACE_MULTIPLIER: float = Field(default=0.0, description="0 disables grace")
    CACHE_MIN_TTL: int = Field(default=DEFAULT_MIN_TTL)
    CACHE_MAX_TTL: int = Field(default=DEFAULT_MAX_TTL)
    CACHE_ADAPTIVE_TTL_ENABLED: bool = Field(default=False)
    CACHE_REFRESH_TIMEOUT_SECONDS: float = Field(default=DEFAULT_REFRESH_TIMEOUT_SECONDS)
    CACHE_LOAD_TIMEOUT_SECONDS: float | None = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Usage:
        from layered_cache.core.config import get_settings

        settings = get_settings()
        capacity = settings.cache.CACHE_LOCAL_CAPACITY_BYTES
        redis_host = settings.redis.REDIS_HOST
    """

    # Cache settings
    CACHE_NAME: str = Field(default="default", description="Cache name used in metrics labels")
    CACHE_LOCAL_CAPACITY_BYTES: int = Field(default=DEFAULT_LOCAL_CAPACITY_BYTES)
    CACHE_DEFAULT_TTL_SECONDS: int = Field(default=DEFAULT_TTL_SECONDS)
    CACHE_EVICTION_POLICY: EvictionPolicy = Field(default=EvictionPolicy.LRU)
    CACHE_BACKEND: BackendType = Field(default=BackendType.NONE)
    CACHE_BACKING_STORE_TIMEOUT_MS: int = Field(default=DEFAULT_BACKING_STORE_TIMEOUT_MS)
    CACHE_STALE_GRACE_MULTIPLIER: float = Field(default=0.0, description="0 disables grace")
    CACHE_MIN_TTL: int = Field(default=DEFAULT_MIN_TTL)
    CACHE_MAX_TTL: int = Field(default=DEFAULT_MAX_TTL)
    CACHE_ADAPTIVE_TTL_ENABLED: bool = Field(default=False)
    CACHE_REFRESH_TIMEOUT_SECONDS: float = Field(default=DEFAULT_REFRESH_TIMEOUT_SECONDS)
    CACHE_LOAD_TIMEOUT_SECONDS: float | None = Field(default=None)

    # Redis settings
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: float = Field(default=1.0, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=1.0, description="Connect timeout in seconds")
    REDIS_KEY_PREFIX: str = Field(default="lcache", description="Prefix for every cache key")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Metrics
    METRICS_ENABLED: bool = Field(default=True, description="Export Prometheus metrics")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    # Nested configuration views
    @property
    def cache(self) -> "CacheSettings":
        """Get cache settings."""
        return CacheSettings(
            CACHE_NAME=self.CACHE_NAME,
            CACHE_LOCAL_CAPACITY_BYTES=self.CACHE_LOCAL_CAPACITY_BYTES,
            CACHE_DEFAULT_TTL_SECONDS=self.CACHE_DEFAULT_TTL_SECONDS,
            CACHE_EVICTION_POLICY=self.CACHE_EVICTION_POLICY,
            CACHE_BACKEND=self.CACHE_BACKEND,
            CACHE_BACKING_STORE_TIMEOUT_MS=self.CACHE_BACKING_STORE_TIMEOUT_MS,
            CACHE_STALE_GRACE_MULTIPLIER=self.CACHE_STALE_GRACE_MULTIPLIER,
            CACHE_MIN_TTL=self.CACHE_MIN_TTL,
            CACHE_MAX_TTL=self.CACHE_MAX_TTL,
            CACHE_ADAPTIVE_TTL_ENABLED=self.CACHE_ADAPTIVE_TTL_ENABLED,
            CACHE_REFRESH_TIMEOUT_SECONDS=self.CACHE_REFRESH_TIMEOUT_SECONDS,
            CACHE_LOAD_TIMEOUT_SECONDS=self.CACHE_LOAD_TIMEOUT_SECONDS,
        )

    @property
    def redis(self) -> "RedisSettings":
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_KEY_PREFIX=self.REDIS_KEY_PREFIX,
        )

    @property
    def logging(self) -> "LoggingSettings":
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Settings are process configuration; cache engines themselves are never
    global and are built explicitly from these values.
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
