"""
Unit Tests for RetryPolicy

Tests backoff computation, retryable vs non-retryable errors and attempt
bounds. Sleeps are recorded instead of awaited.
"""

import httpx
import pytest

from layered_cache.client.retry import RetryPolicy
from layered_cache.core.exceptions import ConfigurationError, UpstreamError


class FlakyCall:
    """Fails with the given errors, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.unit
class TestBackoff:
    """Test delay computation."""

    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=0.1, max_delay=5.0)

        assert policy.compute_delay(0) == pytest.approx(0.1)
        assert policy.compute_delay(1) == pytest.approx(0.2)
        assert policy.compute_delay(3) == pytest.approx(0.8)

    def test_delay_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=3.0)

        assert policy.compute_delay(5) == 3.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1},
            {"max_delay": -0.5},
        ],
    )
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ConfigurationError):
            RetryPolicy(**kwargs)


@pytest.mark.unit
class TestRun:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, recording_sleep):
        call = FlakyCall([])
        policy = RetryPolicy(sleep=recording_sleep)

        assert await policy.run(call) == "ok"
        assert call.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, recording_sleep):
        call = FlakyCall([httpx.ConnectError("refused"), UpstreamError("busy", status_code=503)])
        policy = RetryPolicy(max_attempts=3, base_delay=0.1, sleep=recording_sleep)

        assert await policy.run(call) == "ok"
        assert call.calls == 3
        assert recording_sleep.delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_attempts_exhausted_reraises_last_error(self, recording_sleep):
        call = FlakyCall([UpstreamError("busy", status_code=503)] * 3)
        policy = RetryPolicy(max_attempts=2, base_delay=0.1, sleep=recording_sleep)

        with pytest.raises(UpstreamError) as exc_info:
            await policy.run(call)

        assert exc_info.value.status_code == 503
        assert call.calls == 2
        assert len(recording_sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self, recording_sleep):
        call = FlakyCall([ValueError("bad payload")])
        policy = RetryPolicy(sleep=recording_sleep)

        with pytest.raises(ValueError):
            await policy.run(call)

        assert call.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_custom_retry_on(self, recording_sleep):
        call = FlakyCall([KeyError("flaky")])
        policy = RetryPolicy(retry_on=(KeyError,), base_delay=0, sleep=recording_sleep)

        assert await policy.run(call) == "ok"
        assert recording_sleep.delays == [0]
