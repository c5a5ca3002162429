"""
Configuration Module

Centralized, type-safe configuration management for the layered cache.

Components:
-----------
- **settings.py**: Pydantic-based settings with environment variable loading
- **engine_config.py**: Validated CacheEngine construction options
- **constants.py**: System-wide constants and enums

Usage:
------
```python
from layered_cache.core.config import CacheEngineConfig, get_settings

config = CacheEngineConfig.from_settings(get_settings())
```

Environment Variables:
---------------------
```bash
CACHE_LOCAL_CAPACITY_BYTES=67108864
CACHE_DEFAULT_TTL_SECONDS=300
CACHE_EVICTION_POLICY=lru
CACHE_BACKEND=redis
CACHE_STALE_GRACE_MULTIPLIER=0.5
REDIS_HOST=localhost
LOG_FORMAT=console
```
"""

from .engine_config import CacheEngineConfig
from .settings import Settings, get_settings, reload_settings

__all__ = [
    "CacheEngineConfig",
    "Settings",
    "get_settings",
    "reload_settings",
]
