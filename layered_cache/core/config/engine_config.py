"""
Cache Engine Construction Options

Validated, immutable options a CacheEngine is built from. Validation errors
are converted into ConfigurationError so a misconfigured engine fails fast at
construction and never at request time.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from layered_cache.core.config.constants import (
    ADAPTIVE_TTL_HIGH_RATE,
    ADAPTIVE_TTL_LOW_RATE,
    BACKING_STORE_FAILURE_THRESHOLD,
    BACKING_STORE_RECOVERY_SECONDS,
    DEFAULT_BACKING_STORE_TIMEOUT_MS,
    DEFAULT_LOCAL_CAPACITY_BYTES,
    DEFAULT_MAX_TTL,
    DEFAULT_MIN_TTL,
    DEFAULT_REFRESH_TIMEOUT_SECONDS,
    DEFAULT_TTL_SECONDS,
    EvictionPolicy,
)
from layered_cache.core.config.settings import Settings
from layered_cache.core.exceptions import ConfigurationError


class CacheEngineConfig(BaseModel):
    """
    Construction options for CacheEngine.

    build() is the validated entry point for raw values: it raises
    ConfigurationError. Calling the model directly raises pydantic's
    ValidationError instead.

    Usage:
        config = CacheEngineConfig.build(local_capacity_bytes=1000, default_ttl_seconds=60)
        engine = CacheEngine(config)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="default", min_length=1)
    local_capacity_bytes: int = Field(default=DEFAULT_LOCAL_CAPACITY_BYTES, ge=0)
    default_ttl_seconds: int = Field(default=DEFAULT_TTL_SECONDS, ge=0)
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    backing_store_timeout_ms: int = Field(default=DEFAULT_BACKING_STORE_TIMEOUT_MS, gt=0)
    stale_grace_multiplier: float = Field(default=0.0, ge=0.0)
    min_ttl: int = Field(default=DEFAULT_MIN_TTL, ge=0)
    max_ttl: int = Field(default=DEFAULT_MAX_TTL, ge=0)

    adaptive_ttl_enabled: bool = False
    adaptive_ttl_high_rate: float = Field(default=ADAPTIVE_TTL_HIGH_RATE, gt=0.0)
    adaptive_ttl_low_rate: float = Field(default=ADAPTIVE_TTL_LOW_RATE, ge=0.0)

    refresh_timeout_seconds: float = Field(default=DEFAULT_REFRESH_TIMEOUT_SECONDS, gt=0.0)
    load_timeout_seconds: float | None = Field(default=None, gt=0.0)

    backing_store_failure_threshold: int = Field(default=BACKING_STORE_FAILURE_THRESHOLD, ge=1)
    backing_store_recovery_seconds: float = Field(default=BACKING_STORE_RECOVERY_SECONDS, ge=0.0)

    @model_validator(mode="after")
    def check_bounds(self):
        """Cross-field checks."""
        if self.min_ttl > self.max_ttl:
            raise ValueError(f"min_ttl ({self.min_ttl}) must not exceed max_ttl ({self.max_ttl})")
        if self.adaptive_ttl_low_rate > self.adaptive_ttl_high_rate:
            raise ValueError("adaptive_ttl_low_rate must not exceed adaptive_ttl_high_rate")
        return self

    @property
    def grace_enabled(self) -> bool:
        return self.stale_grace_multiplier > 0

    @property
    def backing_store_timeout_seconds(self) -> float:
        return self.backing_store_timeout_ms / 1000.0

    @classmethod
    def build(cls, options: Mapping[str, Any] | None = None, **overrides: Any) -> "CacheEngineConfig":
        """
        Validate options and build a config.

        Raises:
            ConfigurationError: If any option is invalid or unknown
        """
        data = {**(options or {}), **overrides}
        if data.get("stale_grace_multiplier") is None:
            data.pop("stale_grace_multiplier", None)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]) or "config", "error": err["msg"]}
                for err in e.errors()
            ]
            raise ConfigurationError(
                f"Invalid cache engine configuration: {len(errors)} error(s)",
                details={"errors": errors},
            ) from e

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheEngineConfig":
        """Build engine options from environment settings."""
        cache = settings.cache
        return cls.build(
            name=cache.CACHE_NAME,
            local_capacity_bytes=cache.CACHE_LOCAL_CAPACITY_BYTES,
            default_ttl_seconds=cache.CACHE_DEFAULT_TTL_SECONDS,
            eviction_policy=cache.CACHE_EVICTION_POLICY,
            backing_store_timeout_ms=cache.CACHE_BACKING_STORE_TIMEOUT_MS,
            stale_grace_multiplier=cache.CACHE_STALE_GRACE_MULTIPLIER,
            min_ttl=cache.CACHE_MIN_TTL,
            max_ttl=cache.CACHE_MAX_TTL,
            adaptive_ttl_enabled=cache.CACHE_ADAPTIVE_TTL_ENABLED,
            refresh_timeout_seconds=cache.CACHE_REFRESH_TIMEOUT_SECONDS,
            load_timeout_seconds=cache.CACHE_LOAD_TIMEOUT_SECONDS,
        )
