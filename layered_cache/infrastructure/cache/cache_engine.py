"""
Layered Cache Engine

Architecture:
    CacheEngine (Public API)
        ├── LocalStore (L1, in-process, byte-bounded)
        ├── BackingStoreGuard → BackingStoreAdapter (L2, optional)
        ├── StalenessPolicy (fresh / usable stale / expired, adaptive TTL)
        ├── InFlightTracker (request collapsing)
        ├── EntryCodec (sizes, L2 envelopes)
        └── CacheObserver (metrics & logging)

GET algorithm:
    1. L1 fresh                          → hit
    2. L1 usable stale + SWR requested   → serve stale, refresh in background
    3. L1 past its grace window          → drop (expiration)
    4. L2 read-through                   → populate L1, hit (or stale + refresh)
    5. Deduplicated load                 → write through both tiers
    6. Load failed                       → serve a usable stale entry if any,
                                           otherwise raise LoadError

Invalidation removes entries from both tiers and supersedes matching
in-flight loads: their waiters still get the result, but it is not written
and later callers start a fresh load.
"""

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, TypeVar

from layered_cache.core.config.constants import LOG_KEY_MAX_LENGTH, BackendType, CacheTier, Stage
from layered_cache.core.config.engine_config import CacheEngineConfig
from layered_cache.core.config.settings import Settings, get_settings
from layered_cache.core.exceptions import BackingStoreError, CodecError, LoadError
from layered_cache.core.interfaces.backing_store import BackingStoreAdapter, InMemoryBackingStore
from layered_cache.core.logging.logger import get_logger, get_request_id, log_stage
from layered_cache.infrastructure.cache.backing_store_guard import BackingStoreGuard
from layered_cache.infrastructure.cache.codec import EntryCodec
from layered_cache.infrastructure.cache.inflight import InFlightTracker, call_loader
from layered_cache.infrastructure.cache.local_store import LocalStore
from layered_cache.infrastructure.cache.models import CacheEntry, CacheMetrics, RequestDescriptor
from layered_cache.infrastructure.cache.redis_store import RedisBackingStore
from layered_cache.infrastructure.cache.staleness import StalenessPolicy
from layered_cache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)

T = TypeVar("T")


def _short(key: str) -> str:
    return key[:LOG_KEY_MAX_LENGTH]


# =============================================================================
# OBSERVABILITY
# =============================================================================


class CacheObserver:
    """
    Counts engine events, logs them, and mirrors them to Prometheus.

    Responsibility: All side effects (logging, metrics). The engine only
    reports what happened.
    """

    def __init__(self, metrics_collector: MetricsCollector | None = None, logger_instance=None):
        self._metrics = metrics_collector
        self._logger = logger_instance or logger

        self.l1_hits = 0
        self.l2_hits = 0
        self.stale_hits = 0
        self.misses = 0
        self.loads = 0
        self.load_failures = 0
        self.total_load_ms = 0.0
        self.expirations = 0
        self.codec_errors = 0
        self.backing_store_errors = 0
        self.background_refreshes = 0

    def record_hit(self, tier: CacheTier, key: str, stale: bool = False) -> None:
        if tier is CacheTier.L1:
            self.l1_hits += 1
        else:
            self.l2_hits += 1
        if stale:
            self.stale_hits += 1

        stage = Stage.L1_LOOKUP if tier is CacheTier.L1 else Stage.L2_LOOKUP
        message = f"{tier.value.upper()} {'stale hit' if stale else 'hit'}"
        log_stage(self._logger, stage, message, level="debug", cache_key=_short(key))

        if self._metrics:
            self._metrics.record_hit(tier.value)
            if stale:
                self._metrics.record_stale_hit()

    def record_miss(self, key: str) -> None:
        self.misses += 1
        log_stage(self._logger, Stage.L2_LOOKUP, "Cache miss", level="debug", cache_key=_short(key))
        if self._metrics:
            self._metrics.record_miss()

    def record_fallback(self, key: str, error: LoadError) -> None:
        self.stale_hits += 1
        log_stage(
            self._logger,
            Stage.LOAD,
            "Load failed, serving stale entry",
            level="warning",
            cache_key=_short(key),
            error=error.message,
        )
        if self._metrics:
            self._metrics.record_stale_hit()

    def record_expiration(self, key: str) -> None:
        self.expirations += 1
        log_stage(self._logger, Stage.L1_LOOKUP, "Entry expired", level="debug", cache_key=_short(key))
        if self._metrics:
            self._metrics.record_expiration()

    def record_joined(self, key: str) -> None:
        if self._metrics:
            self._metrics.record_deduped_call()

    def record_load(self, key: str, duration_seconds: float, status: str) -> None:
        self.loads += 1
        self.total_load_ms += duration_seconds * 1000
        if status != "success":
            self.load_failures += 1
            log_stage(
                self._logger,
                Stage.LOAD,
                "Loader failed",
                level="warning",
                cache_key=_short(key),
                status=status,
                duration_ms=round(duration_seconds * 1000, 2),
            )
        else:
            log_stage(
                self._logger,
                Stage.LOAD,
                "Loader completed",
                level="debug",
                cache_key=_short(key),
                duration_ms=round(duration_seconds * 1000, 2),
            )
        if self._metrics:
            self._metrics.record_load(duration_seconds, status)

    def record_evictions(self, count: int) -> None:
        if count and self._metrics:
            self._metrics.record_evictions(count)

    def record_codec_error(self, key: str, error: CodecError, operation: str) -> None:
        self.codec_errors += 1
        log_stage(
            self._logger,
            Stage.CODEC,
            "Codec failure, value not cached",
            level="warning",
            cache_key=_short(key),
            operation=operation,
            error=error.message,
        )
        if self._metrics:
            self._metrics.record_error("codec")

    def record_backing_store_error(self, error: BackingStoreError) -> None:
        # The guard already logged the failure
        self.backing_store_errors += 1
        if self._metrics:
            self._metrics.record_error("backing_store")

    def record_refresh(self, key: str) -> None:
        self.background_refreshes += 1
        log_stage(self._logger, Stage.REFRESH, "Background refresh scheduled", level="debug", cache_key=_short(key))
        if self._metrics:
            self._metrics.record_background_refresh()

    def record_usage(self, entries: int, size_bytes: int) -> None:
        if self._metrics:
            self._metrics.set_local_usage(entries, size_bytes)

    @property
    def hits(self) -> int:
        return self.l1_hits + self.l2_hits

    @property
    def avg_load_ms(self) -> float:
        return self.total_load_ms / self.loads if self.loads else 0.0


# =============================================================================
# ENGINE
# =============================================================================


@dataclass
class _LoadTicket:
    """Write permission of one load; revoked by invalidation."""

    tags: frozenset[str]
    cancelled: bool = False


class CacheEngine:
    """
    Two-tier cache with request collapsing, stale-while-revalidate and
    tag/pattern invalidation.

    Usage:
        engine = CacheEngine(CacheEngineConfig.build(default_ttl_seconds=60))

        user = await engine.get(
            "GET:/users/42:...",
            lambda: fetch_user(42),
            tags=["user:42"],
            stale_while_revalidate=True,
        )
        await engine.invalidate_by_tag("user:42")

    The engine is bound to one event loop. The local tier is safe to touch
    from other threads, the tracker and background tasks are not.
    """

    def __init__(
        self,
        config: CacheEngineConfig | Mapping[str, Any] | None = None,
        backing_store: BackingStoreAdapter | None = None,
        *,
        codec: EntryCodec | None = None,
        clock: Callable[[], float] = time.time,
        metrics_collector: MetricsCollector | None = None,
        owns_backing_store: bool = False,
    ):
        """
        Args:
            config: Validated options, or a mapping validated through
                CacheEngineConfig.build (defaults when omitted)
            backing_store: Optional L2 adapter
            codec: Key/value codec (shared instances are fine)
            clock: Seconds since epoch; injectable for tests
            metrics_collector: Prometheus mirror (None = in-process metrics only)
            owns_backing_store: Close the backing store on close()
        """
        if config is None or isinstance(config, Mapping):
            config = CacheEngineConfig.build(config)
        self._config = config
        self._clock = clock
        self._codec = codec or EntryCodec()
        self._observer = CacheObserver(metrics_collector)
        self._local = LocalStore(self._config.local_capacity_bytes, self._config.eviction_policy)
        self._policy = StalenessPolicy(
            grace_multiplier=self._config.stale_grace_multiplier,
            min_ttl=self._config.min_ttl,
            max_ttl=self._config.max_ttl,
            adaptive=self._config.adaptive_ttl_enabled,
            high_rate=self._config.adaptive_ttl_high_rate,
            low_rate=self._config.adaptive_ttl_low_rate,
        )
        self._tracker = InFlightTracker()
        self._backing = (
            BackingStoreGuard(
                backing_store,
                timeout_seconds=self._config.backing_store_timeout_seconds,
                failure_threshold=self._config.backing_store_failure_threshold,
                recovery_seconds=self._config.backing_store_recovery_seconds,
                on_error=self._observer.record_backing_store_error,
            )
            if backing_store is not None
            else None
        )
        self._owns_backing_store = owns_backing_store

        self._tickets: dict[str, _LoadTicket] = {}
        self._background: set[asyncio.Task] = set()
        self._invalidations = 0
        self._closed = False

        log_stage(
            logger,
            Stage.ENGINE_INIT,
            "Cache engine initialized",
            cache=self._config.name,
            capacity_bytes=self._config.local_capacity_bytes,
            default_ttl_seconds=self._config.default_ttl_seconds,
            eviction_policy=self._config.eviction_policy.value,
            grace_multiplier=self._config.stale_grace_multiplier,
            backing_store=type(backing_store).__name__ if backing_store is not None else None,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(
        self,
        key: str,
        loader: Callable[[], Awaitable[T] | T],
        *,
        ttl_seconds: int | None = None,
        tags: Iterable[str] | None = None,
        stale_while_revalidate: bool = False,
    ) -> T:
        """
        Return the cached value for ``key`` or load it.

        Args:
            key: Cache key (see EntryCodec.compute_key)
            loader: Sync or async callable producing the value on a miss
            ttl_seconds: Freshness lifetime (default from config; 0 = never fresh)
            tags: Tags for invalidate_by_tag
            stale_while_revalidate: Serve a usable stale entry immediately
                and refresh it in the background

        Returns:
            The cached or freshly loaded value

        Raises:
            LoadError: If the loader failed and no usable stale entry exists
                (LoadTimeoutError if it exceeded load_timeout_seconds)
        """
        ttl = self._resolve_ttl(ttl_seconds)
        tag_set = frozenset(tags or ())
        now = self._clock()
        fallback: CacheEntry | None = None

        # STAGE C.1: local tier
        entry = self._local.get(key, now)
        previous = entry
        if entry is not None:
            if self._policy.is_fresh(entry, now):
                self._observer.record_hit(CacheTier.L1, key)
                return entry.value
            if stale_while_revalidate and self._policy.is_usable_stale(entry, now):
                self._observer.record_hit(CacheTier.L1, key, stale=True)
                self._schedule_refresh(key, loader, ttl, tag_set, entry)
                return entry.value
            if self._policy.is_fallback_usable(entry, now):
                fallback = entry
            else:
                self._local.remove(key)
                self._observer.record_expiration(key)

        # STAGE C.2: backing tier
        if self._backing is not None:
            remote = await self._read_through(key)
            if remote is not None:
                now = self._clock()
                if self._policy.is_fresh(remote, now):
                    self._observer.record_hit(CacheTier.L2, key)
                    return remote.value
                if stale_while_revalidate and self._policy.is_usable_stale(remote, now):
                    self._observer.record_hit(CacheTier.L2, key, stale=True)
                    self._schedule_refresh(key, loader, ttl, tag_set, previous)
                    return remote.value
                if fallback is None or remote.created_at > fallback.created_at:
                    fallback = remote

        # STAGE C.3: deduplicated load
        self._observer.record_miss(key)
        if self._tracker.is_in_flight(key):
            self._observer.record_joined(key)
            load = None
        else:
            load = partial(
                self._load_and_store, key, loader, ttl, tag_set, self._open_ticket(key, tag_set), previous
            )

        try:
            return await self._tracker.run_deduplicated(
                key, load, timeout=self._config.load_timeout_seconds
            )
        except LoadError as e:
            if fallback is not None and self._policy.is_fallback_usable(fallback, self._clock()):
                self._observer.record_fallback(key, e)
                return fallback.value
            raise

    async def _read_through(self, key: str) -> CacheEntry | None:
        """
        Fetch ``key`` from L2 and populate L1 when the entry is still usable.

        Returns:
            The rebuilt entry, or None on miss, failure, or if it is past
            its grace window
        """
        generation = self._invalidations
        data = await self._backing.get(key)
        if data is None:
            return None

        try:
            decoded = self._codec.decode_envelope(data)
        except CodecError as e:
            self._observer.record_codec_error(key, e, "decode")
            return None

        entry = CacheEntry(
            key=key,
            value=decoded.value,
            created_at=decoded.created_at,
            ttl_seconds=decoded.ttl_seconds,
            size_bytes=len(data),
            tags=decoded.tags,
        )
        now = self._clock()
        if not (self._policy.is_fresh(entry, now) or self._policy.is_fallback_usable(entry, now)):
            return None

        # Do not resurrect entries invalidated while we were waiting on L2,
        # nor overwrite a newer local value
        current = self._local.peek(key)
        if generation == self._invalidations and (current is None or current.created_at <= entry.created_at):
            evicted = self._local.put(entry)
            self._observer.record_evictions(len(evicted))
            self._observer.record_usage(len(self._local), self._local.current_size_bytes)
            log_stage(logger, Stage.L2_LOOKUP, "L1 populated from L2", level="debug", cache_key=_short(key))
        return entry

    # -------------------------------------------------------------------------
    # Loads
    # -------------------------------------------------------------------------

    def _open_ticket(self, key: str, tags: frozenset[str]) -> _LoadTicket:
        ticket = _LoadTicket(tags=tags)
        self._tickets[key] = ticket
        return ticket

    async def _load_and_store(
        self,
        key: str,
        loader: Callable[[], Any],
        ttl: int,
        tags: frozenset[str],
        ticket: _LoadTicket,
        previous: CacheEntry | None = None,
    ) -> Any:
        """Runs inside the tracker's shared task; every waiter gets its outcome."""
        try:
            start = time.perf_counter()
            try:
                value = await call_loader(loader)
            except asyncio.CancelledError:
                self._observer.record_load(key, time.perf_counter() - start, "cancelled")
                raise
            except Exception as e:
                self._observer.record_load(key, time.perf_counter() - start, "failure")
                raise LoadError.from_exception(
                    e,
                    message=f"Loader failed for key {_short(key)}: {e}",
                    request_id=get_request_id(),
                    cache_key=key,
                ) from e
            self._observer.record_load(key, time.perf_counter() - start, "success")

            if ticket.cancelled:
                log_stage(
                    logger,
                    Stage.WRITE,
                    "Load superseded by invalidation, result not cached",
                    level="debug",
                    cache_key=_short(key),
                )
                return value

            await self._write_through(key, value, ttl, tags, ticket, previous)
            return value
        finally:
            if self._tickets.get(key) is ticket:
                del self._tickets[key]

    def _schedule_refresh(
        self,
        key: str,
        loader: Callable[[], Any],
        ttl: int,
        tags: frozenset[str],
        previous: CacheEntry | None = None,
    ) -> None:
        """Start one background refresh for ``key`` unless a load is already running."""
        if self._closed or self._tracker.is_in_flight(key):
            return

        ticket = self._open_ticket(key, tags)
        record = self._tracker.start(
            key,
            partial(self._load_and_store, key, loader, ttl, tags, ticket, previous),
            timeout=self._config.refresh_timeout_seconds,
        )
        self._background.add(record.task)
        record.task.add_done_callback(partial(self._on_refresh_done, key))
        self._observer.record_refresh(key)

    def _on_refresh_done(self, key: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log_stage(
                logger,
                Stage.REFRESH,
                "Background refresh failed, stale entry kept",
                level="warning",
                cache_key=_short(key),
                error_type=type(error).__name__,
                error=str(error),
            )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set(
        self,
        key: str,
        value: Any,
        *,
        ttl_seconds: int | None = None,
        tags: Iterable[str] | None = None,
    ) -> None:
        """
        Store a value in both tiers.

        An in-flight load for the same key is superseded: its result will
        not overwrite this value.
        """
        self._supersede(lambda k, _: k == key)
        await self._write_through(key, value, self._resolve_ttl(ttl_seconds), frozenset(tags or ()))

    async def _write_through(
        self,
        key: str,
        value: Any,
        ttl: int,
        tags: frozenset[str],
        ticket: _LoadTicket | None = None,
        previous: CacheEntry | None = None,
    ) -> None:
        if previous is not None and self._policy.adaptive and ttl > 0:
            # Reload of an existing entry: adapt the requested TTL to observed traffic
            previous = replace(previous, ttl_seconds=ttl)
            ttl = self._policy.next_ttl(previous, previous.observed_access_rate(self._clock()))

        if not self._policy.should_retain(ttl):
            await self._drop_superseded(key)
            return

        try:
            value_bytes = self._codec.serialize(value)
        except CodecError as e:
            self._observer.record_codec_error(key, e, "serialize")
            await self._drop_superseded(key)
            return

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            ttl_seconds=ttl,
            size_bytes=len(value_bytes),
            tags=tags,
        )
        if previous is not None:
            entry.access_rate_ema = previous.access_rate_ema

        # STAGE C.4: write through
        evicted = self._local.put(entry)
        self._observer.record_evictions(len(evicted))
        self._observer.record_usage(len(self._local), self._local.current_size_bytes)
        log_stage(
            logger,
            Stage.WRITE,
            "Entry stored",
            level="debug",
            cache_key=_short(key),
            ttl_seconds=ttl,
            size_bytes=entry.size_bytes,
            evicted=len(evicted),
        )

        retention = self._policy.retention_seconds(ttl)
        if self._backing is None:
            return
        if retention <= 0:
            await self._backing.delete(key)
            return

        envelope = self._codec.encode_envelope(value_bytes, now, ttl, tags)
        await self._backing.set(key, envelope, retention, tags)

        if ticket is not None and ticket.cancelled:
            # Invalidated while the L2 write was in flight
            await self._backing.delete(key)

    async def _drop_superseded(self, key: str) -> None:
        """Remove an older value that an uncacheable write replaces."""
        self._local.remove(key)
        if self._backing is not None:
            await self._backing.delete(key)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def _supersede(self, predicate: Callable[[str, _LoadTicket], bool]) -> int:
        """Revoke write permission of matching in-flight loads and detach them."""
        self._invalidations += 1
        superseded = 0
        for key, ticket in list(self._tickets.items()):
            if predicate(key, ticket):
                ticket.cancelled = True
                del self._tickets[key]
                self._tracker.discard(key)
                superseded += 1
        return superseded

    async def invalidate(self, key: str) -> bool:
        """
        Remove ``key`` from both tiers.

        Returns:
            True if an entry existed in either tier
        """
        removed = self._local.remove(key)
        superseded = self._supersede(lambda k, _: k == key)
        remote = await self._backing.delete(key) if self._backing is not None else False

        self._observer.record_usage(len(self._local), self._local.current_size_bytes)
        log_stage(
            logger,
            Stage.INVALIDATION,
            "Key invalidated",
            cache_key=_short(key),
            removed=removed or remote,
            superseded_loads=superseded,
        )
        return removed or remote

    async def invalidate_by_tag(self, tag: str) -> int:
        """
        Remove every entry carrying ``tag`` from both tiers.

        Returns:
            Entries removed locally, or the backing store's count when larger
        """
        local = self._local.remove_where(lambda entry: tag in entry.tags)
        superseded = self._supersede(lambda _, ticket: tag in ticket.tags)
        remote = await self._backing.delete_where(tag=tag) if self._backing is not None else 0

        self._observer.record_usage(len(self._local), self._local.current_size_bytes)
        log_stage(
            logger,
            Stage.INVALIDATION,
            "Tag invalidated",
            tag=tag,
            local_removed=len(local),
            remote_removed=remote,
            superseded_loads=superseded,
        )
        return max(len(local), remote)

    async def invalidate_by_pattern(self, pattern: str | re.Pattern) -> int:
        """
        Remove every entry whose key matches ``pattern`` (re.search) from
        both tiers.

        Raises:
            re.error: If ``pattern`` is not a valid regular expression

        Returns:
            Entries removed locally, or the backing store's count when larger
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        local = self._local.remove_where(lambda entry: regex.search(entry.key) is not None)
        superseded = self._supersede(lambda key, _: regex.search(key) is not None)
        remote = await self._backing.delete_where(pattern=regex) if self._backing is not None else 0

        self._observer.record_usage(len(self._local), self._local.current_size_bytes)
        log_stage(
            logger,
            Stage.INVALIDATION,
            "Pattern invalidated",
            pattern=regex.pattern,
            local_removed=len(local),
            remote_removed=remote,
            superseded_loads=superseded,
        )
        return max(len(local), remote)

    async def clear(self, *, include_backing_store: bool = False) -> int:
        """
        Drop every local entry and supersede every in-flight load.

        Args:
            include_backing_store: Also delete every key in L2

        Returns:
            Number of local entries removed
        """
        removed = self._local.clear()
        self._supersede(lambda *_: True)
        if include_backing_store and self._backing is not None:
            await self._backing.delete_where(pattern=".*")
        self._observer.record_usage(0, 0)
        log_stage(logger, Stage.INVALIDATION, "Cache cleared", local_removed=removed)
        return removed

    # -------------------------------------------------------------------------
    # Warming
    # -------------------------------------------------------------------------

    async def warm(self, keys: Iterable[str]) -> int:
        """
        Pre-load L1 from L2 for known keys (startup, after deployment).

        Returns:
            Number of keys warmed
        """
        if self._backing is None:
            return 0

        warmed = 0
        for key in keys:
            if await self._read_through(key) is not None:
                warmed += 1

        if warmed:
            log_stage(logger, Stage.L2_LOOKUP, "L1 warming complete", warmed_items=warmed)
        return warmed

    # -------------------------------------------------------------------------
    # Monitoring & lifecycle
    # -------------------------------------------------------------------------

    def get_metrics(self) -> CacheMetrics:
        """Point-in-time metrics snapshot."""
        observer = self._observer
        total = observer.hits + observer.misses
        return CacheMetrics(
            hits=observer.hits,
            misses=observer.misses,
            hit_rate=round(observer.hits / total, 4) if total else 0.0,
            evictions=self._local.evictions,
            avg_load_ms=round(observer.avg_load_ms, 3),
            deduped_calls=self._tracker.collapsed_count,
            l1_hits=observer.l1_hits,
            l2_hits=observer.l2_hits,
            stale_hits=observer.stale_hits,
            loads=observer.loads,
            load_failures=observer.load_failures,
            expirations=observer.expirations,
            codec_errors=observer.codec_errors,
            backing_store_errors=observer.backing_store_errors,
            background_refreshes=observer.background_refreshes,
            entries=len(self._local),
            size_bytes=self._local.current_size_bytes,
            capacity_bytes=self._local.capacity_bytes,
            in_flight=len(self._tracker),
        )

    async def health_check(self) -> dict[str, Any]:
        """
        Report engine health.

        Status is ``degraded`` when the backing store is unreachable; the
        engine still serves from L1 and loaders in that state.
        """
        health: dict[str, Any] = {
            "status": "healthy",
            "name": self._config.name,
            "local": {
                "entries": len(self._local),
                "size_bytes": self._local.current_size_bytes,
                "capacity_bytes": self._local.capacity_bytes,
                "utilization_pct": (
                    round(self._local.current_size_bytes / self._local.capacity_bytes * 100, 2)
                    if self._local.capacity_bytes
                    else 0.0
                ),
            },
            "in_flight": len(self._tracker),
            "background_refreshes": len(self._background),
            "backing_store": None,
        }
        if self._backing is not None:
            backing = await self._backing.health_check()
            health["backing_store"] = backing
            if backing.get("status") != "healthy":
                health["status"] = "degraded"
        return health

    async def drain_background(self) -> None:
        """Wait until every scheduled background refresh has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """
        Stop scheduling refreshes, wait for outstanding ones, and close the
        backing store if this engine owns it.
        """
        self._closed = True
        await self.drain_background()
        if self._owns_backing_store and self._backing is not None:
            close = getattr(self._backing.store, "close", None)
            if close is not None:
                await close()
        log_stage(logger, Stage.ENGINE_INIT, "Cache engine closed", cache=self._config.name)

    # -------------------------------------------------------------------------
    # Utilities
    # -------------------------------------------------------------------------

    def key_for(self, descriptor: RequestDescriptor) -> str:
        """Compute the cache key for a request descriptor."""
        return self._codec.compute_key(descriptor)

    def _resolve_ttl(self, ttl_seconds: int | None) -> int:
        if ttl_seconds is None:
            return self._config.default_ttl_seconds
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")
        return ttl_seconds

    @property
    def config(self) -> CacheEngineConfig:
        return self._config

    @property
    def codec(self) -> EntryCodec:
        return self._codec

    @property
    def local_store(self) -> LocalStore:
        return self._local

    @property
    def backing_store(self) -> BackingStoreGuard | None:
        return self._backing

    @property
    def tracker(self) -> InFlightTracker:
        return self._tracker


# =============================================================================
# COMPOSITION ROOT
# =============================================================================


def build_cache_engine(
    settings: Settings | None = None,
    backing_store: BackingStoreAdapter | None = None,
    **overrides: Any,
) -> CacheEngine:
    """
    Build a CacheEngine from environment settings.

    The backing store is chosen by CACHE_BACKEND unless one is passed in.
    Keyword overrides take precedence over settings.

    Raises:
        ConfigurationError: If the resulting options are invalid

    Usage:
        engine = build_cache_engine()
        ...
        await engine.close()
    """
    settings = settings or get_settings()
    config = CacheEngineConfig.from_settings(settings)
    if overrides:
        config = CacheEngineConfig.build(config.model_dump(), **overrides)

    owns_backing_store = False
    if backing_store is None:
        backend = settings.cache.CACHE_BACKEND
        if backend is BackendType.REDIS:
            backing_store = RedisBackingStore(settings.redis)
            owns_backing_store = True
        elif backend is BackendType.MEMORY:
            backing_store = InMemoryBackingStore()

    metrics_collector = MetricsCollector(config.name) if settings.METRICS_ENABLED else None

    return CacheEngine(
        config,
        backing_store,
        metrics_collector=metrics_collector,
        owns_backing_store=owns_backing_store,
    )
