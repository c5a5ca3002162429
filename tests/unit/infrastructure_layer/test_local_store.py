"""
Unit Tests for LocalStore

Tests byte-bounded storage, access tracking and the eviction policies.
"""

import pytest

from layered_cache.core.config.constants import EvictionPolicy
from layered_cache.infrastructure.cache.local_store import LocalStore
from layered_cache.infrastructure.cache.models import CacheEntry


def make_entry(key: str, size: int = 10, created_at: float = 0.0, **kwargs) -> CacheEntry:
    return CacheEntry(key=key, value=key, created_at=created_at, ttl_seconds=60, size_bytes=size, **kwargs)


@pytest.mark.unit
class TestLocalStoreBasics:
    """Test storage and size accounting."""

    def test_put_and_get(self):
        store = LocalStore(100)
        store.put(make_entry("a"))

        entry = store.get("a", now=5.0)

        assert entry.value == "a"
        assert entry.access_count == 1
        assert entry.last_accessed_at == 5.0

    def test_get_missing(self):
        assert LocalStore(100).get("missing", now=0.0) is None

    def test_peek_does_not_record_access(self):
        store = LocalStore(100)
        store.put(make_entry("a"))

        assert store.peek("a").access_count == 0

    def test_size_accounting(self):
        """Test that size tracks insertions, replacements and removals."""
        store = LocalStore(100)
        store.put(make_entry("a", size=10))
        store.put(make_entry("b", size=20))
        assert store.current_size_bytes == 30

        store.put(make_entry("a", size=5))
        assert store.current_size_bytes == 25

        store.remove("b")
        assert store.current_size_bytes == 5
        assert len(store) == 1

    def test_remove_missing_returns_false(self):
        assert LocalStore(100).remove("missing") is False

    def test_remove_where(self):
        store = LocalStore(100)
        store.put(make_entry("a", tags=frozenset({"users"})))
        store.put(make_entry("b", tags=frozenset({"users"})))
        store.put(make_entry("c"))

        removed = store.remove_where(lambda e: "users" in e.tags)

        assert sorted(removed) == ["a", "b"]
        assert store.keys() == ["c"]
        assert store.current_size_bytes == 10

    def test_clear(self):
        store = LocalStore(100)
        store.put(make_entry("a"))
        store.put(make_entry("b"))

        assert store.clear() == 2
        assert len(store) == 0
        assert store.current_size_bytes == 0

    def test_oversized_entry_not_stored(self):
        """Test that an entry larger than capacity is rejected and drops the old value."""
        store = LocalStore(30)
        store.put(make_entry("a", size=10))

        evicted = store.put(make_entry("a", size=31))

        assert evicted == []
        assert "a" not in store
        assert store.current_size_bytes == 0

    def test_zero_capacity_stores_nothing(self):
        store = LocalStore(0)
        store.put(make_entry("a", size=1))
        assert len(store) == 0


@pytest.mark.unit
class TestLRUEviction:
    """Test least-recently-used eviction."""

    def test_evicts_least_recently_used(self):
        """Test that a read refreshes recency."""
        store = LocalStore(30, EvictionPolicy.LRU)
        for key in ("a", "b", "c"):
            store.put(make_entry(key))
        store.get("a", now=1.0)

        evicted = store.put(make_entry("d"))

        assert evicted == ["b"]
        assert store.keys() == ["c", "a", "d"]
        assert store.evictions == 1

    def test_evicts_as_many_as_needed(self):
        store = LocalStore(30)
        for key in ("a", "b", "c"):
            store.put(make_entry(key))

        evicted = store.put(make_entry("big", size=25))

        assert evicted == ["a", "b", "c"]
        assert store.keys() == ["big"]

    def test_new_entry_is_never_its_own_victim(self):
        store = LocalStore(30)
        store.put(make_entry("a", size=10))

        store.put(make_entry("b", size=30))

        assert store.keys() == ["b"]


@pytest.mark.unit
class TestLFUEviction:
    """Test least-frequently-used eviction."""

    def test_evicts_least_frequently_used(self):
        store = LocalStore(30, EvictionPolicy.LFU)
        for key in ("a", "b", "c"):
            store.put(make_entry(key))
        for now in (1.0, 2.0, 3.0):
            store.get("a", now)
        store.get("c", now=4.0)

        assert store.put(make_entry("d")) == ["b"]

    def test_ties_broken_by_recency(self):
        store = LocalStore(20, EvictionPolicy.LFU)
        store.put(make_entry("a"))
        store.put(make_entry("b"))
        store.get("b", now=1.0)
        store.get("a", now=2.0)

        assert store.put(make_entry("c")) == ["b"]


@pytest.mark.unit
class TestAdaptiveEviction:
    """Test access-rate weighted eviction."""

    def test_keeps_hot_entry_that_lru_would_evict(self):
        """Test that frequency outweighs a slightly older last access."""
        adaptive = LocalStore(20, EvictionPolicy.ADAPTIVE)
        lru = LocalStore(20, EvictionPolicy.LRU)
        for store in (adaptive, lru):
            store.put(make_entry("hot"))
            store.put(make_entry("cold"))
            for _ in range(10):
                store.get("hot", now=1.0)
            store.get("cold", now=5.0)

        assert lru.put(make_entry("new", created_at=6.0)) == ["hot"]
        assert adaptive.put(make_entry("new", created_at=6.0)) == ["cold"]

    def test_untouched_entries_fall_back_to_lru_order(self):
        store = LocalStore(20, EvictionPolicy.ADAPTIVE)
        store.put(make_entry("a"))
        store.put(make_entry("b"))

        assert store.put(make_entry("c")) == ["a"]

    def test_policy_accepts_string(self):
        assert LocalStore(10, "adaptive").policy is EvictionPolicy.ADAPTIVE
