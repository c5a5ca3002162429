"""
Cache Data Model

- RequestDescriptor: what a cache key is computed from
- CacheEntry: one stored result with its bookkeeping
- CacheMetrics: snapshot returned by CacheEngine.get_metrics()
"""

import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

_WHITESPACE = re.compile(r"\s+")


class RequestDescriptor(BaseModel):
    """
    Identity of a request for cache-key purposes.

    ``namespace`` is an opaque caller-supplied token (user, session, platform
    variant); it is never interpreted, only folded into the key.
    """

    model_config = {"frozen": True}

    method: str = Field(default="GET", min_length=1)
    path: str = Field(..., min_length=1, description="URL path, full URL or operation name")
    params: Any = Field(default=None, description="Query parameters or request variables")
    namespace: str | None = Field(default=None)

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.strip().upper()

    @classmethod
    def for_graphql(
        cls,
        operation_name: str,
        query: str,
        variables: dict[str, Any] | None = None,
        namespace: str | None = None,
    ) -> "RequestDescriptor":
        """
        Descriptor for a GraphQL operation.

        Whitespace in the query document is collapsed so formatting changes
        do not produce new keys.
        """
        normalized_query = _WHITESPACE.sub(" ", query).strip()
        return cls(
            method="GRAPHQL",
            path=operation_name,
            params={"query": normalized_query, "variables": variables or {}},
            namespace=namespace,
        )


@dataclass(slots=True)
class CacheEntry:
    """
    One stored result.

    Times are seconds on the engine clock. ``ttl_seconds == 0`` means the
    entry is never fresh; it is only kept as a stale fallback.
    """

    key: str
    value: Any
    created_at: float
    ttl_seconds: int
    size_bytes: int
    tags: frozenset[str] = field(default_factory=frozenset)
    access_count: int = 0
    last_accessed_at: float = 0.0
    access_rate_ema: float = 0.0

    def __post_init__(self) -> None:
        if not self.last_accessed_at:
            self.last_accessed_at = self.created_at

    def age(self, now: float) -> float:
        return now - self.created_at

    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def touch(self, now: float) -> None:
        """Record a read hit."""
        self.access_count += 1
        self.last_accessed_at = now

    def observed_access_rate(self, now: float) -> float:
        """Accesses per second over the entry's lifetime."""
        return self.access_count / max(self.age(now), 1.0)


class CacheMetrics(BaseModel):
    """Point-in-time engine metrics."""

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    evictions: int = 0
    avg_load_ms: float = 0.0
    deduped_calls: int = 0

    l1_hits: int = 0
    l2_hits: int = 0
    stale_hits: int = 0
    loads: int = 0
    load_failures: int = 0
    expirations: int = 0
    codec_errors: int = 0
    backing_store_errors: int = 0
    background_refreshes: int = 0

    entries: int = 0
    size_bytes: int = 0
    capacity_bytes: int = 0
    in_flight: int = 0
