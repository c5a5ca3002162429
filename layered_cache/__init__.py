"""
layered_cache - layered request cache with in-flight deduplication

Quick start:
    from layered_cache import CacheEngine, CacheEngineConfig, RequestDescriptor

    engine = CacheEngine(CacheEngineConfig.build(default_ttl_seconds=60))
    key = engine.key_for(RequestDescriptor(method="GET", path="/users", params={"page": 1}))
    users = await engine.get(key, fetch_users, tags=["users"])
"""

from layered_cache.core.config import CacheEngineConfig, Settings, get_settings
from layered_cache.core.exceptions import (
    BackingStoreError,
    CodecError,
    ConfigurationError,
    LayeredCacheError,
    LoadError,
    LoadTimeoutError,
)
from layered_cache.core.interfaces import BackingStoreAdapter, InMemoryBackingStore
from layered_cache.infrastructure.cache import (
    CacheEngine,
    CacheMetrics,
    EntryCodec,
    RedisBackingStore,
    RequestDescriptor,
    build_cache_engine,
)

__version__ = "0.1.0"

__all__ = [
    "BackingStoreAdapter",
    "BackingStoreError",
    "CacheEngine",
    "CacheEngineConfig",
    "CacheMetrics",
    "CodecError",
    "ConfigurationError",
    "EntryCodec",
    "InMemoryBackingStore",
    "LayeredCacheError",
    "LoadError",
    "LoadTimeoutError",
    "RedisBackingStore",
    "RequestDescriptor",
    "Settings",
    "build_cache_engine",
    "get_settings",
]
