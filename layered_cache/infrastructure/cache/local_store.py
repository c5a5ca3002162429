"""
Local Store - in-process, byte-bounded L1 tier

Responsibility: key -> CacheEntry map with access tracking and eviction.

Implementation Details:
- OrderedDict keeps recency order (oldest first) for O(1) LRU
- Capacity is accounted in bytes (entry.size_bytes), not item count
- Every operation holds a threading.RLock and never suspends, so it is
  atomic for threaded hosts and for asyncio tasks alike
- Eviction happens immediately after insertion; the entry just inserted is
  never its own victim
"""

import threading
from collections import OrderedDict
from collections.abc import Callable

from layered_cache.core.config.constants import (
    ADAPTIVE_EVICTION_FREQUENCY_WEIGHT,
    ADAPTIVE_EVICTION_RECENCY_WEIGHT,
    LOG_KEY_MAX_LENGTH,
    EvictionPolicy,
    Stage,
)
from layered_cache.core.logging.logger import get_logger, log_stage
from layered_cache.infrastructure.cache.models import CacheEntry

logger = get_logger(__name__)


class LocalStore:
    """
    Fixed-capacity in-memory entry store.

    Eviction policies:
        LRU: evict the least recently accessed entry (baseline)
        LFU: evict the least accessed entry, oldest access first on ties
        ADAPTIVE: evict the lowest weighted score of observed access rate
            and recency, both normalized across the current entries
    """

    def __init__(self, capacity_bytes: int, policy: EvictionPolicy = EvictionPolicy.LRU):
        self._capacity = capacity_bytes
        self._policy = EvictionPolicy(policy)
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._size = 0
        self._evictions = 0
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: str, now: float) -> CacheEntry | None:
        """
        Get an entry and record the access.

        Freshness is not checked here; that is the staleness policy's job.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry.touch(now)
            self._entries.move_to_end(key)
            return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Get an entry without recording an access."""
        with self._lock:
            return self._entries.get(key)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def put(self, entry: CacheEntry) -> list[str]:
        """
        Insert or replace an entry, evicting others to stay within capacity.

        An entry larger than the whole capacity is not stored, and any
        previous entry under its key is dropped.

        Returns:
            Keys evicted to make room
        """
        with self._lock:
            previous = self._entries.pop(entry.key, None)
            if previous is not None:
                self._size -= previous.size_bytes

            if entry.size_bytes > self._capacity:
                log_stage(
                    logger,
                    Stage.WRITE,
                    "Entry exceeds local capacity, not cached locally",
                    level="warning",
                    cache_key=entry.key[:LOG_KEY_MAX_LENGTH],
                    size_bytes=entry.size_bytes,
                    capacity_bytes=self._capacity,
                )
                return []

            self._entries[entry.key] = entry
            self._size += entry.size_bytes

            evicted: list[str] = []
            while self._size > self._capacity:
                victim = self._select_victim(exclude=entry.key)
                if victim is None:
                    break
                removed = self._entries.pop(victim)
                self._size -= removed.size_bytes
                evicted.append(victim)

            if evicted:
                self._evictions += len(evicted)
                log_stage(
                    logger,
                    Stage.EVICTION,
                    "Evicted local entries",
                    level="debug",
                    policy=self._policy.value,
                    evicted=len(evicted),
                )
            return evicted

    def remove(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._size -= entry.size_bytes
            return True

    def remove_where(self, predicate: Callable[[CacheEntry], bool]) -> list[str]:
        """
        Remove every entry matching the predicate.

        Returns:
            Removed keys
        """
        with self._lock:
            matched = [key for key, entry in self._entries.items() if predicate(entry)]
            for key in matched:
                self._size -= self._entries.pop(key).size_bytes
            return matched

    def clear(self) -> int:
        """Remove everything. Returns the number of entries removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._size = 0
            return count

    # -------------------------------------------------------------------------
    # Eviction
    # -------------------------------------------------------------------------

    def _select_victim(self, exclude: str) -> str | None:
        candidates = [entry for key, entry in self._entries.items() if key != exclude]
        if not candidates:
            return None

        if self._policy is EvictionPolicy.LFU:
            return min(candidates, key=lambda e: (e.access_count, e.last_accessed_at)).key

        if self._policy is EvictionPolicy.ADAPTIVE:
            return self._adaptive_victim(candidates)

        # LRU: OrderedDict front is the least recently used
        return candidates[0].key

    def _adaptive_victim(self, candidates: list[CacheEntry]) -> str:
        now = max(entry.last_accessed_at for entry in candidates)
        oldest = min(entry.last_accessed_at for entry in candidates)
        recency_span = now - oldest

        rates = [max(entry.access_rate_ema, entry.observed_access_rate(now)) for entry in candidates]
        max_rate = max(rates)

        def score(index: int) -> float:
            entry = candidates[index]
            frequency = rates[index] / max_rate if max_rate > 0 else 0.0
            recency = (entry.last_accessed_at - oldest) / recency_span if recency_span > 0 else 1.0
            return (
                ADAPTIVE_EVICTION_FREQUENCY_WEIGHT * frequency
                + ADAPTIVE_EVICTION_RECENCY_WEIGHT * recency
            )

        # min() keeps the first minimum, so ties fall back to LRU order
        victim_index = min(range(len(candidates)), key=score)
        return candidates[victim_index].key

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def capacity_bytes(self) -> int:
        return self._capacity

    @property
    def current_size_bytes(self) -> int:
        return self._size

    @property
    def policy(self) -> EvictionPolicy:
        return self._policy

    @property
    def evictions(self) -> int:
        return self._evictions

    def keys(self) -> list[str]:
        """All keys, least recently used first."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
