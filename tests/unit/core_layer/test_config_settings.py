"""
Unit Tests for Configuration Settings

Tests the settings loading, validation, default values and the validated
engine options built from them.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from layered_cache.core.config.constants import (
    DEFAULT_LOCAL_CAPACITY_BYTES,
    DEFAULT_TTL_SECONDS,
    BackendType,
    EvictionPolicy,
)
from layered_cache.core.config.engine_config import CacheEngineConfig
from layered_cache.core.config.settings import Settings, get_settings, reload_settings
from layered_cache.core.exceptions import ConfigurationError


@pytest.mark.unit
class TestSettingsInitialization:
    """Test Settings class initialization and validation."""

    def test_settings_can_be_created(self):
        """Test that Settings can be instantiated."""
        settings = Settings()
        assert settings is not None

    def test_settings_has_required_attribute_groups(self):
        """Test that Settings exposes its nested views."""
        settings = Settings()

        assert hasattr(settings, "cache")
        assert hasattr(settings, "redis")
        assert hasattr(settings, "logging")

    def test_cache_settings_have_valid_defaults(self):
        """Test that cache settings have reasonable defaults."""
        settings = Settings()

        assert settings.cache.CACHE_LOCAL_CAPACITY_BYTES == DEFAULT_LOCAL_CAPACITY_BYTES
        assert settings.cache.CACHE_DEFAULT_TTL_SECONDS == DEFAULT_TTL_SECONDS
        assert settings.cache.CACHE_EVICTION_POLICY is EvictionPolicy.LRU
        assert settings.cache.CACHE_BACKEND is BackendType.NONE
        assert settings.cache.CACHE_STALE_GRACE_MULTIPLIER == 0.0

    def test_redis_settings_have_valid_defaults(self):
        """Test that Redis settings have reasonable defaults."""
        settings = Settings()

        assert isinstance(settings.redis.REDIS_PORT, int)
        assert 1000 <= settings.redis.REDIS_PORT <= 65535
        assert settings.redis.REDIS_DB >= 0
        assert settings.redis.REDIS_KEY_PREFIX

    def test_log_level_is_normalized(self):
        """Test that LOG_LEVEL accepts lowercase values."""
        settings = Settings(LOG_LEVEL="debug")
        assert settings.logging.LOG_LEVEL == "DEBUG"

    def test_invalid_log_level_rejected(self):
        """Test that an unknown LOG_LEVEL fails validation."""
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="verbose")


@pytest.mark.unit
class TestEnvironmentOverrides:
    """Test environment variable loading."""

    def test_environment_variable_overrides_default(self):
        """Test that env vars override defaults."""
        with patch.dict(os.environ, {"CACHE_DEFAULT_TTL_SECONDS": "42", "CACHE_BACKEND": "memory"}):
            settings = Settings()

        assert settings.cache.CACHE_DEFAULT_TTL_SECONDS == 42
        assert settings.cache.CACHE_BACKEND is BackendType.MEMORY

    def test_eviction_policy_from_environment(self):
        """Test that the eviction policy is parsed into the enum."""
        with patch.dict(os.environ, {"CACHE_EVICTION_POLICY": "adaptive"}):
            settings = Settings()

        assert settings.cache.CACHE_EVICTION_POLICY is EvictionPolicy.ADAPTIVE


@pytest.mark.unit
class TestSettingsSingleton:
    """Test global settings access."""

    def test_get_settings_returns_same_instance(self):
        """Test that get_settings is a singleton."""
        assert get_settings() is get_settings()

    def test_reload_settings_replaces_instance(self):
        """Test that reload_settings builds a new instance."""
        before = get_settings()
        after = reload_settings()

        assert after is not before
        assert get_settings() is after


@pytest.mark.unit
class TestCacheEngineConfig:
    """Test validated engine options."""

    def test_defaults(self):
        """Test that an empty build yields defaults."""
        config = CacheEngineConfig.build()

        assert config.default_ttl_seconds == DEFAULT_TTL_SECONDS
        assert config.eviction_policy is EvictionPolicy.LRU
        assert config.grace_enabled is False
        assert config.load_timeout_seconds is None

    def test_backing_store_timeout_in_seconds(self):
        """Test millisecond to second conversion."""
        config = CacheEngineConfig.build(backing_store_timeout_ms=250)
        assert config.backing_store_timeout_seconds == 0.25

    def test_none_grace_multiplier_means_default(self):
        """Test that an explicit None grace multiplier falls back to 0."""
        config = CacheEngineConfig.build(stale_grace_multiplier=None)
        assert config.stale_grace_multiplier == 0.0

    def test_overrides_take_precedence_over_options(self):
        """Test that keyword overrides win over the options mapping."""
        config = CacheEngineConfig.build({"default_ttl_seconds": 5}, default_ttl_seconds=7)
        assert config.default_ttl_seconds == 7

    @pytest.mark.parametrize(
        "options",
        [
            {"local_capacity_bytes": -1},
            {"default_ttl_seconds": -5},
            {"stale_grace_multiplier": -0.5},
            {"backing_store_timeout_ms": 0},
            {"eviction_policy": "random"},
            {"min_ttl": 100, "max_ttl": 10},
            {"adaptive_ttl_low_rate": 5.0, "adaptive_ttl_high_rate": 1.0},
            {"no_such_option": True},
        ],
    )
    def test_invalid_options_raise_configuration_error(self, options):
        """Test that invalid options fail at construction time."""
        with pytest.raises(ConfigurationError) as exc_info:
            CacheEngineConfig.build(**options)

        assert exc_info.value.details["errors"]

    def test_config_is_immutable(self):
        """Test that built options cannot be mutated."""
        config = CacheEngineConfig.build()
        with pytest.raises(ValidationError):
            config.default_ttl_seconds = 1

    def test_from_settings(self):
        """Test conversion from environment settings."""
        settings = Settings(
            CACHE_NAME="users-api",
            CACHE_DEFAULT_TTL_SECONDS=30,
            CACHE_STALE_GRACE_MULTIPLIER=0.5,
            CACHE_EVICTION_POLICY="lfu",
        )

        config = CacheEngineConfig.from_settings(settings)

        assert config.name == "users-api"
        assert config.default_ttl_seconds == 30
        assert config.stale_grace_multiplier == 0.5
        assert config.eviction_policy is EvictionPolicy.LFU
        assert config.grace_enabled is True

    def test_from_settings_rejects_invalid_values(self):
        """Test that invalid environment values surface as ConfigurationError."""
        settings = Settings(CACHE_LOCAL_CAPACITY_BYTES=-10)

        with pytest.raises(ConfigurationError):
            CacheEngineConfig.from_settings(settings)
