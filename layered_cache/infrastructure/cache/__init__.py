"""
Cache Module

Provides the layered cache engine (L1 in-process + optional L2 backing
store) with request collapsing.
"""

from .backing_store_guard import BackingStoreGuard, CircuitState
from .cache_engine import CacheEngine, CacheObserver, build_cache_engine
from .codec import DecodedEntry, EntryCodec
from .inflight import InFlightRequest, InFlightTracker
from .local_store import LocalStore
from .models import CacheEntry, CacheMetrics, RequestDescriptor
from .redis_store import RedisBackingStore
from .staleness import StalenessPolicy

__all__ = [
    "BackingStoreGuard",
    "CacheEngine",
    "CacheEntry",
    "CacheMetrics",
    "CacheObserver",
    "CircuitState",
    "DecodedEntry",
    "EntryCodec",
    "InFlightRequest",
    "InFlightTracker",
    "LocalStore",
    "RedisBackingStore",
    "RequestDescriptor",
    "StalenessPolicy",
    "build_cache_engine",
]
