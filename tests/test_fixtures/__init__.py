"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .cache_factory import CacheTestFactory, CountingLoader
from .clock import FakeClock, RecordingSleep
from .request_factory import RequestFactory

__all__ = ["CacheTestFactory", "CountingLoader", "FakeClock", "RecordingSleep", "RequestFactory"]
