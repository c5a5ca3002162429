"""
System Constants and Enumerations

This module defines constants and enumerations used across the layered cache.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for policies and tiers
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Cache processing stages used as the ``stage`` field of log entries.

    Format: {PREFIX}.{SEQUENCE}_{DESCRIPTIVE_NAME}
    """

    ENGINE_INIT = "C.0_ENGINE_INIT"
    L1_LOOKUP = "C.1_L1_LOOKUP"
    L2_LOOKUP = "C.2_L2_LOOKUP"
    LOAD = "C.3_LOAD"
    WRITE = "C.4_WRITE"
    INVALIDATION = "C.5_INVALIDATION"
    REFRESH = "C.6_BACKGROUND_REFRESH"
    EVICTION = "C.7_EVICTION"
    BACKING_STORE = "C.BS_BACKING_STORE"
    CODEC = "C.CODEC"
    CLIENT = "CL_API_CLIENT"
    RETRY = "R_RETRY_LOGIC"


# ============================================================================
# Cache Tiers
# ============================================================================


class CacheTier(str, Enum):
    """
    Multi-tier caching levels.

    L1: In-process local store (fastest, no I/O)
    L2: Distributed backing store (network)
    """

    L1 = "l1"
    L2 = "l2"


# ============================================================================
# Eviction Policies
# ============================================================================


class EvictionPolicy(str, Enum):
    """
    Local store eviction policies.

    LRU: least-recently-used (always available baseline)
    LFU: least-frequently-used, ties broken by recency
    ADAPTIVE: weighted access-rate estimate and recency
    """

    LRU = "lru"
    LFU = "lfu"
    ADAPTIVE = "adaptive"


class BackendType(str, Enum):
    """Backing store selected by the composition root."""

    NONE = "none"
    MEMORY = "memory"
    REDIS = "redis"


# ============================================================================
# Defaults
# ============================================================================

DEFAULT_LOCAL_CAPACITY_BYTES = 64 * 1024 * 1024
DEFAULT_TTL_SECONDS = 300
DEFAULT_BACKING_STORE_TIMEOUT_MS = 250
DEFAULT_MIN_TTL = 1
DEFAULT_MAX_TTL = 86400
DEFAULT_REFRESH_TIMEOUT_SECONDS = 30.0

# Backing store circuit: consecutive failures before the tier is skipped
BACKING_STORE_FAILURE_THRESHOLD = 5
BACKING_STORE_RECOVERY_SECONDS = 30.0

# Adaptive TTL tuning
ADAPTIVE_TTL_EMA_ALPHA = 0.3
ADAPTIVE_TTL_HIGH_RATE = 1.0  # accesses per second
ADAPTIVE_TTL_LOW_RATE = 0.01
ADAPTIVE_TTL_RAISE_FACTOR = 1.5
ADAPTIVE_TTL_LOWER_FACTOR = 0.5

# Adaptive eviction weights
ADAPTIVE_EVICTION_FREQUENCY_WEIGHT = 0.6
ADAPTIVE_EVICTION_RECENCY_WEIGHT = 0.4

# Key layout
KEY_DIGEST_LENGTH = 32
REDIS_KEY_PREFIX = "lcache"
REDIS_ENTRY_SEGMENT = "e"
REDIS_TAG_SEGMENT = "tag"
REDIS_DELETE_BATCH_SIZE = 500

# Retry defaults for the API client
MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.2
RETRY_MAX_DELAY = 5.0
RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

# HTTP headers
HEADER_REQUEST_ID = "X-Request-ID"

# Log field truncation
LOG_KEY_MAX_LENGTH = 80
