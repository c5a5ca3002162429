"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tests.test_fixtures import CacheTestFactory, CountingLoader, FakeClock, RecordingSleep  # noqa: E402

# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio is loaded via pyproject.toml configuration (asyncio_mode = "auto")


# ============================================================================
# Environment-Based Integration Toggles
# ============================================================================


@pytest.fixture(scope="session")
def use_real_redis():
    """Check if real Redis should be used for integration tests."""
    return os.getenv("USE_REAL_REDIS", "0").lower() in ("1", "true", "yes")


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def fake_clock():
    """Manually advanced clock shared by the engine and its backing store."""
    return FakeClock()


@pytest.fixture
def recording_sleep():
    """asyncio.sleep replacement that records delays."""
    return RecordingSleep()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def engine(fake_clock):
    """Single-tier engine, grace disabled."""
    return CacheTestFactory.engine(fake_clock, default_ttl_seconds=60)


@pytest.fixture
def grace_engine(fake_clock):
    """Single-tier engine with a grace window of one TTL."""
    return CacheTestFactory.engine(fake_clock, default_ttl_seconds=60, stale_grace_multiplier=1.0)


@pytest.fixture
def memory_store(fake_clock):
    """In-memory backing store on the fake clock."""
    return CacheTestFactory.memory_store(fake_clock)


@pytest.fixture
def layered_engine(fake_clock, memory_store):
    """Two-tier engine over an in-memory backing store."""
    return CacheTestFactory.engine(fake_clock, memory_store, default_ttl_seconds=60)


@pytest.fixture
def loader():
    """Counting async loader returning "value"."""
    return CountingLoader()


# ============================================================================
# Mock Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def mock_backing_store():
    """Generic mock backing store for testing."""
    store = AsyncMock()
    store.get = AsyncMock(return_value=None)
    store.set = AsyncMock(return_value=None)
    store.delete = AsyncMock(return_value=True)
    store.delete_where = AsyncMock(return_value=0)
    store.health_check = AsyncMock(return_value={"status": "healthy"})
    return store


@pytest.fixture
def mock_redis_client():
    """
    Mock redis.asyncio client.

    ``pipeline()`` returns an async context manager yielding a pipeline whose
    commands are buffered (sync) and executed by ``execute()``.
    """
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.delete = AsyncMock(return_value=1)
    client.smembers = AsyncMock(return_value=set())
    client.srem = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[True])
    client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
    client.pipeline.return_value.__aexit__ = AsyncMock(return_value=None)
    client.pipe = pipe
    return client


@pytest.fixture
def mock_metrics_collector():
    """Mock metrics collector for monitoring testing."""
    from layered_cache.infrastructure.monitoring.metrics_collector import MetricsCollector

    return MagicMock(spec=MetricsCollector)
