"""
Core Interfaces Module

Protocols for pluggable components, enabling dependency injection and
testability.

Components:
-----------
- **backing_store.py**: BackingStoreAdapter protocol + InMemoryBackingStore

Usage:
------
```python
from layered_cache.core.interfaces import BackingStoreAdapter, InMemoryBackingStore

engine = CacheEngine(config, backing_store=InMemoryBackingStore())
```
"""

from layered_cache.core.interfaces.backing_store import BackingStoreAdapter, InMemoryBackingStore

__all__ = [
    "BackingStoreAdapter",
    "InMemoryBackingStore",
]
