"""
Backing Store Guard - fault absorption around the distributed tier

The engine never talks to a BackingStoreAdapter directly. Every call goes
through this guard:

1.  **Timeout**: each call is bounded by ``timeout_seconds``
    (asyncio.wait_for). A slow tier costs at most that much latency.

2.  **Absorption**: any failure becomes a BackingStoreError that is logged,
    counted and swallowed here. Reads degrade to a miss, writes to a
    no-op, deletes to "nothing deleted".

3.  **Circuit**: after ``failure_threshold`` consecutive failures the tier
    is skipped entirely (OPEN) for ``recovery_seconds``. The first call
    after that is a probe (HALF-OPEN): success closes the circuit, failure
    re-opens it and restarts the timer. State is per process.
"""

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any, TypeVar

from layered_cache.core.config.constants import (
    BACKING_STORE_FAILURE_THRESHOLD,
    BACKING_STORE_RECOVERY_SECONDS,
    LOG_KEY_MAX_LENGTH,
    Stage,
)
from layered_cache.core.exceptions import BackingStoreError, BackingStoreTimeoutError
from layered_cache.core.interfaces.backing_store import BackingStoreAdapter
from layered_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Enumeration of possible circuit states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BackingStoreGuard:
    """
    Wraps a BackingStoreAdapter with timeout, error absorption and a
    local circuit breaker.

    Usage:
        guard = BackingStoreGuard(RedisBackingStore(), timeout_seconds=0.25)
        data = await guard.get(key)  # None on miss *or* on failure
    """

    def __init__(
        self,
        store: BackingStoreAdapter,
        timeout_seconds: float,
        failure_threshold: int = BACKING_STORE_FAILURE_THRESHOLD,
        recovery_seconds: float = BACKING_STORE_RECOVERY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        on_error: Callable[[BackingStoreError], None] | None = None,
    ):
        self._store = store
        self._timeout = timeout_seconds
        self._failure_threshold = failure_threshold
        self._recovery_seconds = recovery_seconds
        self._clock = clock
        self._on_error = on_error

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._errors = 0
        self._skipped = 0
        self.last_error: BackingStoreError | None = None

    # -------------------------------------------------------------------------
    # Adapter operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> bytes | None:
        return await self._call("get", key, lambda: self._store.get(key), default=None)

    async def set(self, key: str, data: bytes, ttl_seconds: int, tags: Iterable[str] = ()) -> bool:
        """Returns True if the write reached the store."""
        tags = tuple(tags)

        async def write() -> bool:
            await self._store.set(key, data, ttl_seconds, tags)
            return True

        return await self._call("set", key, write, default=False)

    async def delete(self, key: str) -> bool:
        return await self._call("delete", key, lambda: self._store.delete(key), default=False)

    async def delete_where(self, *, tag: str | None = None, pattern: str | re.Pattern | None = None) -> int:
        target = f"tag={tag}" if tag is not None else f"pattern={getattr(pattern, 'pattern', pattern)}"
        return await self._call(
            "delete_where",
            target,
            lambda: self._store.delete_where(tag=tag, pattern=pattern),
            default=0,
        )

    async def health_check(self) -> dict[str, Any]:
        report = await self._call(
            "health_check", "-", self._store.health_check, default={"status": "unhealthy"}
        )
        return {
            **report,
            "circuit": self._state.value,
            "errors": self._errors,
            "skipped_calls": self._skipped,
        }

    # -------------------------------------------------------------------------
    # Guard mechanics
    # -------------------------------------------------------------------------

    async def _call(
        self,
        operation: str,
        key: str,
        call: Callable[[], Awaitable[T]],
        default: T,
    ) -> T:
        if not self._allow_request():
            self._skipped += 1
            return default

        half_open_call = self._state is CircuitState.HALF_OPEN
        try:
            result = await asyncio.wait_for(call(), self._timeout)
        except asyncio.CancelledError:
            if half_open_call and self._state is CircuitState.HALF_OPEN:
                # Recovery call never finished: reopen so a later call can retry
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
            raise
        except asyncio.TimeoutError as e:
            error = BackingStoreTimeoutError(
                f"Backing store {operation} timed out after {self._timeout}s",
                details={"operation": operation, "cache_key": key, "timeout_seconds": self._timeout},
            )
            error.__cause__ = e
            self._record_failure(error, operation, key)
            return default
        except BackingStoreError as e:
            self._record_failure(e.with_context(operation=operation), operation, key)
            return default
        except Exception as e:
            error = BackingStoreError.from_exception(e, operation=operation, cache_key=key)
            error.__cause__ = e
            self._record_failure(error, operation, key)
            return default

        self._record_success()
        return result

    def _allow_request(self) -> bool:
        """
        CLOSED: allow. OPEN: block until recovery_seconds passed, then
        allow one probe (HALF-OPEN). HALF-OPEN: block while the probe runs.
        """
        if self._state is CircuitState.CLOSED:
            return True

        if self._state is CircuitState.OPEN:
            if self._clock() - self._opened_at >= self._recovery_seconds:
                self._state = CircuitState.HALF_OPEN
                log_stage(logger, Stage.BACKING_STORE, "Backing store probe allowed", level="info")
                return True
            return False

        return False

    def _record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            log_stage(
                logger,
                Stage.BACKING_STORE,
                "Backing store recovered, circuit closed",
                level="info",
            )
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def _record_failure(self, error: BackingStoreError, operation: str, key: str) -> None:
        self._errors += 1
        self._consecutive_failures += 1
        self.last_error = error

        log_stage(
            logger,
            Stage.BACKING_STORE,
            "Backing store call failed, treated as miss",
            level="warning",
            operation=operation,
            cache_key=key[:LOG_KEY_MAX_LENGTH],
            error_type=error.details.get("original_error", type(error).__name__),
            error=error.message,
        )

        if self._state is CircuitState.HALF_OPEN or (
            self._state is CircuitState.CLOSED
            and self._consecutive_failures >= self._failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            log_stage(
                logger,
                Stage.BACKING_STORE,
                "Backing store circuit opened",
                level="error",
                consecutive_failures=self._consecutive_failures,
                recovery_seconds=self._recovery_seconds,
            )

        if self._on_error is not None:
            self._on_error(error)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def store(self) -> BackingStoreAdapter:
        return self._store

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def errors(self) -> int:
        return self._errors
