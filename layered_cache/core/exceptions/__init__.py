"""
Exception Module

Structured exception hierarchy for the layered cache.

Module Structure:
-----------------
- **base.py**: LayeredCacheError base class + ConfigurationError
- **cache.py**: Codec, backing store and loader exceptions
- **client.py**: API client exceptions

Usage:
------
```python
from layered_cache.core.exceptions import LoadError, ConfigurationError
```
"""

from layered_cache.core.exceptions.base import ConfigurationError, LayeredCacheError
from layered_cache.core.exceptions.cache import (
    BackingStoreError,
    BackingStoreTimeoutError,
    CacheError,
    CodecError,
    LoadError,
    LoadTimeoutError,
)
from layered_cache.core.exceptions.client import ClientError, UpstreamError

__all__ = [
    # Base
    "LayeredCacheError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "CodecError",
    "BackingStoreError",
    "BackingStoreTimeoutError",
    "LoadError",
    "LoadTimeoutError",
    # Client
    "ClientError",
    "UpstreamError",
]
