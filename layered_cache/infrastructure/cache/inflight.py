"""
In-Flight Request Tracker - request collapsing

Concurrent calls for the same key share one load:

    caller A ──┐
    caller B ──┼──> shared asyncio.Task(loader) ──> same value / same exception
    caller C ──┘

Guarantees:
- Check-and-register has no suspension point in between, so at most one
  load per key exists at any instant on the event loop
- The registration is removed inside the load task before it settles;
  a caller arriving after settlement always starts a new load
- Every waiter awaits the task through asyncio.shield: a waiter that is
  cancelled or times out stops waiting, the load continues for the others
- A timeout bounds the load itself, so a stuck load frees its key
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from layered_cache.core.config.constants import LOG_KEY_MAX_LENGTH, Stage
from layered_cache.core.exceptions import LoadTimeoutError
from layered_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")

Loader = Callable[[], Awaitable[T] | T]


@dataclass
class InFlightRequest(Generic[T]):
    """A load currently in progress for one key."""

    key: str
    started_at: float
    task: "asyncio.Task[T] | None" = None
    waiter_count: int = 1
    superseded: bool = False


async def call_loader(loader: Loader) -> Any:
    """Invoke a sync or async loader."""
    result = loader()
    if inspect.isawaitable(result):
        result = await result
    return result


def _retrieve_exception(task: asyncio.Task) -> None:
    # Mark the outcome as retrieved even when every waiter went away
    if not task.cancelled():
        task.exception()


class InFlightTracker:
    """
    Deduplicates concurrent loads sharing a key.

    Must be used from a single event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._inflight: dict[str, InFlightRequest] = {}
        self._collapsed = 0
        self._started = 0

    async def run_deduplicated(
        self,
        key: str,
        loader: Loader,
        *,
        timeout: float | None = None,
    ) -> Any:
        """
        Run ``loader`` once for all concurrent callers of ``key``.

        Args:
            key: Cache key
            loader: Sync or async callable producing the value
            timeout: Seconds before the load is abandoned (None = no limit)

        Returns:
            The loader's result, identical for every waiter

        Raises:
            Whatever the loader raised (same instance for every waiter)
            LoadTimeoutError: If the load exceeded ``timeout``
        """
        record = self._inflight.get(key)
        if record is not None:
            record.waiter_count += 1
            self._collapsed += 1
            log_stage(
                logger,
                Stage.LOAD,
                "Joined in-flight load",
                level="debug",
                cache_key=key[:LOG_KEY_MAX_LENGTH],
                waiters=record.waiter_count,
            )
        else:
            record = self._register(key, loader, timeout)

        return await asyncio.shield(record.task)

    def start(self, key: str, loader: Loader, *, timeout: float | None = None) -> InFlightRequest:
        """
        Start a load for ``key`` without waiting for it.

        Returns the existing record if a load is already in flight. Used for
        fire-and-forget refreshes; the caller owns a reference to the task.
        """
        record = self._inflight.get(key)
        if record is not None:
            return record
        return self._register(key, loader, timeout)

    def _register(self, key: str, loader: Loader, timeout: float | None) -> InFlightRequest:
        record = InFlightRequest(key=key, started_at=self._clock())
        self._inflight[key] = record
        record.task = asyncio.create_task(self._run(record, loader, timeout))
        record.task.add_done_callback(_retrieve_exception)
        self._started += 1
        return record

    async def _run(self, record: InFlightRequest, loader: Loader, timeout: float | None) -> Any:
        try:
            if timeout is None:
                return await call_loader(loader)
            try:
                return await asyncio.wait_for(call_loader(loader), timeout)
            except asyncio.TimeoutError as e:
                log_stage(
                    logger,
                    Stage.LOAD,
                    "Load timed out",
                    level="warning",
                    cache_key=record.key[:LOG_KEY_MAX_LENGTH],
                    timeout_seconds=timeout,
                )
                raise LoadTimeoutError(
                    f"Load timed out after {timeout}s",
                    details={"cache_key": record.key, "timeout_seconds": timeout},
                ) from e
        finally:
            if self._inflight.get(record.key) is record:
                del self._inflight[record.key]

    def discard(self, key: str) -> InFlightRequest | None:
        """
        Detach the in-flight load for ``key`` without cancelling it.

        Existing waiters still receive its outcome; later callers start a
        new load.
        """
        record = self._inflight.pop(key, None)
        if record is not None:
            record.superseded = True
        return record

    def get(self, key: str) -> InFlightRequest | None:
        return self._inflight.get(key)

    def is_in_flight(self, key: str) -> bool:
        return key in self._inflight

    def keys(self) -> list[str]:
        return list(self._inflight.keys())

    @property
    def collapsed_count(self) -> int:
        """Loads avoided by joining an in-flight one."""
        return self._collapsed

    async def drain(self) -> None:
        """Wait for every in-flight load to settle (outcomes ignored)."""
        tasks = [record.task for record in self._inflight.values() if record.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> dict[str, int]:
        return {
            "in_flight": len(self._inflight),
            "started": self._started,
            "collapsed": self._collapsed,
        }

    def __len__(self) -> int:
        return len(self._inflight)
