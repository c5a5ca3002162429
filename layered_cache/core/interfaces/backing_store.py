"""
Backing Store Protocol

This module defines the interface the cache engine uses to talk to its
optional distributed tier (L2), plus an in-memory implementation.

Architectural Decision: Protocol-based abstraction
- The engine never imports a concrete store; any object with these
  coroutines can be plugged in (Redis, Memcached, a test double)
- Implementations raise freely; BackingStoreGuard converts and absorbs
  failures so a broken tier degrades to a miss

Payloads are opaque bytes produced by EntryCodec.encode_envelope().
"""

import re
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class BackingStoreAdapter(Protocol):
    """
    Protocol for distributed cache tiers.

    Implementations:
    - RedisBackingStore: Production Redis-backed tier
    - InMemoryBackingStore: Testing/single-node development

    Usage:
        async def read_through(store: BackingStoreAdapter, key: str) -> bytes | None:
            return await store.get(key)
    """

    async def get(self, key: str) -> bytes | None:
        """
        Get a stored payload.

        Returns:
            Payload bytes or None if absent/expired
        """
        ...

    async def set(self, key: str, data: bytes, ttl_seconds: int, tags: Iterable[str] = ()) -> None:
        """
        Store a payload.

        Args:
            key: Cache key
            data: Encoded payload
            ttl_seconds: Physical retention; 0 means no expiry
            tags: Tags indexed for delete_where(tag=...)
        """
        ...

    async def delete(self, key: str) -> bool:
        """
        Delete one key.

        Returns:
            True if the key existed
        """
        ...

    async def delete_where(self, *, tag: str | None = None, pattern: str | re.Pattern | None = None) -> int:
        """
        Delete every key carrying ``tag`` and/or matching ``pattern``.

        ``pattern`` uses re.search semantics against the cache key. When both
        are given, a key must satisfy both.

        Returns:
            Number of keys deleted
        """
        ...

    async def health_check(self) -> dict[str, Any]:
        """
        Report tier health.

        Returns:
            Dict with at least a ``status`` field
        """
        ...


class InMemoryBackingStore:
    """
    Dict-backed BackingStoreAdapter.

    Keeps a tag index and honours TTLs lazily on read, using an injectable
    clock so tests can move time forward.

    Note: This is NOT distributed. Use for tests and single-node setups.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[bytes, float | None, frozenset[str]]] = {}
        self._tag_index: dict[str, set[str]] = {}

    async def get(self, key: str) -> bytes | None:
        item = self._data.get(key)
        if item is None:
            return None
        data, expires_at, _ = item
        if expires_at is not None and self._clock() >= expires_at:
            self._drop(key)
            return None
        return data

    async def set(self, key: str, data: bytes, ttl_seconds: int, tags: Iterable[str] = ()) -> None:
        self._drop(key)
        expires_at = self._clock() + ttl_seconds if ttl_seconds > 0 else None
        tag_set = frozenset(tags)
        self._data[key] = (data, expires_at, tag_set)
        for tag in tag_set:
            self._tag_index.setdefault(tag, set()).add(key)

    async def delete(self, key: str) -> bool:
        return self._drop(key)

    async def delete_where(self, *, tag: str | None = None, pattern: str | re.Pattern | None = None) -> int:
        if tag is None and pattern is None:
            raise ValueError("delete_where requires a tag or a pattern")

        candidates = set(self._tag_index.get(tag, ())) if tag is not None else set(self._data)
        if pattern is not None:
            regex = re.compile(pattern) if isinstance(pattern, str) else pattern
            candidates = {key for key in candidates if regex.search(key)}

        return sum(1 for key in candidates if self._drop(key))

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "backend": "memory", "keys_count": len(self._data)}

    def _drop(self, key: str) -> bool:
        item = self._data.pop(key, None)
        if item is None:
            return False
        for tag in item[2]:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]
        return True

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data
