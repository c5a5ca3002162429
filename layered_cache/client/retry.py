"""
Bounded Retry Policy

Explicit retry loop with exponential backoff for upstream calls:

    delay(attempt) = min(base_delay * 2 ** attempt, max_delay)

where ``attempt`` is the zero-based index of the attempt that just failed.
At most ``max_attempts`` calls are made; the last error is re-raised.

Retried by default (transient):
- httpx.TransportError: connection refused, DNS failure, timeouts
- UpstreamError: upstream answered 429/502/503/504

Everything else (4xx, decoding errors, programming errors) fails
immediately.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from layered_cache.core.config.constants import MAX_RETRIES, RETRY_BASE_DELAY, RETRY_MAX_DELAY, Stage
from layered_cache.core.exceptions import ConfigurationError, UpstreamError
from layered_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_EXCEPTIONS: tuple[type[BaseException], ...] = (httpx.TransportError, UpstreamError)


class RetryPolicy:
    """
    Retry policy built on tenacity's AsyncRetrying.

    Usage:
        policy = RetryPolicy(max_attempts=3, base_delay=0.2, max_delay=5.0)
        response = await policy.run(lambda: client.get("/users/42"))
    """

    def __init__(
        self,
        max_attempts: int = MAX_RETRIES,
        base_delay: float = RETRY_BASE_DELAY,
        max_delay: float = RETRY_MAX_DELAY,
        retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_EXCEPTIONS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ConfigurationError(
                "max_attempts must be at least 1", details={"max_attempts": max_attempts}
            )
        if base_delay < 0 or max_delay < 0:
            raise ConfigurationError(
                "Retry delays must be non-negative",
                details={"base_delay": base_delay, "max_delay": max_delay},
            )

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_on = retry_on
        self._sleep = sleep

    def compute_delay(self, attempt: int) -> float:
        """Backoff before the retry following zero-based ``attempt``."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.compute_delay(retry_state.attempt_number - 1)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        log_stage(
            logger,
            Stage.RETRY,
            "Transient upstream failure, retrying",
            level="warning",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error_type=type(error).__name__ if error else None,
            error=str(error) if error else None,
        )

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Call ``fn`` until it succeeds, a non-retryable error is raised, or
        attempts run out.

        Raises:
            The last exception raised by ``fn``
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await fn()
        return result
