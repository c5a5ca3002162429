"""
Metrics Collector with Prometheus Integration

Mirrors cache engine events into Prometheus metrics:
- Hits by tier, misses, stale serves
- Evictions and expirations
- Deduplicated (collapsed) calls
- Load latency histogram and load outcomes
- Backing store and codec errors
- Local tier size gauges

Every metric carries a ``cache`` label so several engines in one process
stay distinguishable. CacheEngine.get_metrics() remains the in-process
source of truth; these series exist for scraping.

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Histogram buckets for latency percentiles
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from layered_cache.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

CACHE_HITS = Counter(
    'layered_cache_hits_total',
    'Total cache hits',
    ['cache', 'tier']  # l1 or l2
)

CACHE_MISSES = Counter(
    'layered_cache_misses_total',
    'Total cache misses (calls that did not hit a fresh or served-stale entry)',
    ['cache']
)

CACHE_STALE_HITS = Counter(
    'layered_cache_stale_hits_total',
    'Stale entries served while a refresh runs',
    ['cache']
)

CACHE_EVICTIONS = Counter(
    'layered_cache_evictions_total',
    'Entries evicted from the local tier for capacity',
    ['cache']
)

CACHE_EXPIRATIONS = Counter(
    'layered_cache_expirations_total',
    'Entries dropped on read because they were past their grace window',
    ['cache']
)

CACHE_DEDUPED_CALLS = Counter(
    'layered_cache_deduped_calls_total',
    'Calls that joined an in-flight load instead of starting one',
    ['cache']
)

CACHE_LOADS = Counter(
    'layered_cache_loads_total',
    'Loader executions by outcome',
    ['cache', 'status']  # success, failure, timeout
)

CACHE_LOAD_LATENCY = Histogram(
    'layered_cache_load_duration_seconds',
    'Loader execution duration',
    ['cache'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

CACHE_ERRORS = Counter(
    'layered_cache_errors_total',
    'Absorbed cache tier errors by type',
    ['cache', 'error_type']  # backing_store, codec
)

CACHE_REFRESHES = Counter(
    'layered_cache_background_refreshes_total',
    'Background refreshes started',
    ['cache']
)

CACHE_ENTRIES = Gauge(
    'layered_cache_local_entries',
    'Entries currently held in the local tier',
    ['cache']
)

CACHE_SIZE_BYTES = Gauge(
    'layered_cache_local_size_bytes',
    'Bytes currently held in the local tier',
    ['cache']
)


class MetricsCollector:
    """
    Per-engine Prometheus recorder.

    Usage:
        metrics = MetricsCollector("users-api")
        metrics.record_hit("l1")
        metrics.record_load(0.042, "success")

        # Exposition
        body = metrics.get_prometheus_metrics()
    """

    def __init__(self, cache_name: str = "default"):
        self.cache_name = cache_name
        logger.debug("Metrics collector initialized", stage="M.0", cache=cache_name)

    # =========================================================================
    # Lookups
    # =========================================================================

    def record_hit(self, tier: str) -> None:
        """Record a hit on ``tier`` (l1/l2)."""
        CACHE_HITS.labels(cache=self.cache_name, tier=tier).inc()

    def record_miss(self) -> None:
        CACHE_MISSES.labels(cache=self.cache_name).inc()

    def record_stale_hit(self) -> None:
        CACHE_STALE_HITS.labels(cache=self.cache_name).inc()

    def record_expiration(self) -> None:
        CACHE_EXPIRATIONS.labels(cache=self.cache_name).inc()

    def record_evictions(self, count: int) -> None:
        if count:
            CACHE_EVICTIONS.labels(cache=self.cache_name).inc(count)

    # =========================================================================
    # Loads
    # =========================================================================

    def record_deduped_call(self) -> None:
        CACHE_DEDUPED_CALLS.labels(cache=self.cache_name).inc()

    def record_load(self, duration_seconds: float, status: str) -> None:
        """Record one loader execution and its duration."""
        CACHE_LOADS.labels(cache=self.cache_name, status=status).inc()
        CACHE_LOAD_LATENCY.labels(cache=self.cache_name).observe(duration_seconds)

    def record_background_refresh(self) -> None:
        CACHE_REFRESHES.labels(cache=self.cache_name).inc()

    # =========================================================================
    # Errors
    # =========================================================================

    def record_error(self, error_type: str) -> None:
        """Record an absorbed error (backing_store, codec)."""
        CACHE_ERRORS.labels(cache=self.cache_name, error_type=error_type).inc()

    # =========================================================================
    # Local tier
    # =========================================================================

    def set_local_usage(self, entries: int, size_bytes: int) -> None:
        CACHE_ENTRIES.labels(cache=self.cache_name).set(entries)
        CACHE_SIZE_BYTES.labels(cache=self.cache_name).set(size_bytes)

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST
