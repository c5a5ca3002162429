"""
Core Module

Foundational components: configuration, logging, exceptions and interfaces.
"""

from .exceptions import (
    BackingStoreError,
    BackingStoreTimeoutError,
    CacheError,
    ClientError,
    CodecError,
    ConfigurationError,
    LayeredCacheError,
    LoadError,
    LoadTimeoutError,
    UpstreamError,
)
from .logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
)

__all__ = [
    # Exceptions
    "LayeredCacheError",
    "ConfigurationError",
    "CacheError",
    "CodecError",
    "BackingStoreError",
    "BackingStoreTimeoutError",
    "LoadError",
    "LoadTimeoutError",
    "ClientError",
    "UpstreamError",
    # Logging
    "clear_request_id",
    "get_logger",
    "get_request_id",
    "log_stage",
    "set_request_id",
    "setup_logging",
]
