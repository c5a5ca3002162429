"""
Staleness Policy - freshness, grace window and adaptive TTL

Timeline of an entry (ttl > 0, grace multiplier g > 0):

    created_at ────── fresh ──────┬──── usable stale ────┬──── expired
                              + ttl               + ttl * (1 + g)

With g == 0 there is no usable-stale window. ttl == 0 entries are never
fresh; with grace enabled they are still kept as a fallback for a failed
reload.
"""

import math

from layered_cache.core.config.constants import (
    ADAPTIVE_TTL_EMA_ALPHA,
    ADAPTIVE_TTL_HIGH_RATE,
    ADAPTIVE_TTL_LOW_RATE,
    ADAPTIVE_TTL_LOWER_FACTOR,
    ADAPTIVE_TTL_RAISE_FACTOR,
    DEFAULT_MAX_TTL,
    DEFAULT_MIN_TTL,
)
from layered_cache.infrastructure.cache.models import CacheEntry


class StalenessPolicy:
    """
    Decides whether an entry is fresh, usable stale, or expired, and
    computes adaptive TTL adjustments from observed access rate.
    """

    def __init__(
        self,
        grace_multiplier: float = 0.0,
        min_ttl: int = DEFAULT_MIN_TTL,
        max_ttl: int = DEFAULT_MAX_TTL,
        adaptive: bool = False,
        high_rate: float = ADAPTIVE_TTL_HIGH_RATE,
        low_rate: float = ADAPTIVE_TTL_LOW_RATE,
        ema_alpha: float = ADAPTIVE_TTL_EMA_ALPHA,
    ):
        self.grace_multiplier = grace_multiplier
        self.min_ttl = min_ttl
        self.max_ttl = max_ttl
        self.adaptive = adaptive
        self.high_rate = high_rate
        self.low_rate = low_rate
        self.ema_alpha = ema_alpha

    @property
    def grace_enabled(self) -> bool:
        return self.grace_multiplier > 0

    def is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return entry.age(now) < entry.ttl_seconds

    def is_usable_stale(self, entry: CacheEntry, now: float) -> bool:
        """Expired by TTL but still inside the grace window."""
        if not self.grace_enabled or self.is_fresh(entry, now):
            return False
        return entry.age(now) < self.retention_seconds(entry.ttl_seconds)

    def is_fallback_usable(self, entry: CacheEntry, now: float) -> bool:
        """Whether a failed reload may serve this entry instead of raising."""
        if self.is_usable_stale(entry, now):
            return True
        return self.grace_enabled and entry.ttl_seconds == 0

    def should_retain(self, ttl_seconds: int) -> bool:
        """Whether a freshly loaded value is worth storing at all."""
        return ttl_seconds > 0 or self.grace_enabled

    def retention_seconds(self, ttl_seconds: int) -> int:
        """How long a tier should physically keep an entry."""
        return int(math.ceil(ttl_seconds * (1 + self.grace_multiplier)))

    def next_ttl(self, entry: CacheEntry, observed_access_rate: float) -> int:
        """
        TTL for the next generation of an entry.

        The observed rate is smoothed into ``entry.access_rate_ema``. Hot
        entries get a longer TTL (up to max_ttl), cold ones a shorter TTL
        (down to min_ttl). TTL 0 entries are never adapted.
        """
        ttl = entry.ttl_seconds
        if not self.adaptive or ttl == 0:
            return ttl

        entry.access_rate_ema = (
            self.ema_alpha * observed_access_rate + (1 - self.ema_alpha) * entry.access_rate_ema
        )

        if entry.access_rate_ema > self.high_rate:
            return min(max(int(ttl * ADAPTIVE_TTL_RAISE_FACTOR), ttl + 1), self.max_ttl)
        if entry.access_rate_ema < self.low_rate:
            return max(int(ttl * ADAPTIVE_TTL_LOWER_FACTOR), self.min_ttl)
        return ttl
