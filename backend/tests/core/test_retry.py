"""Tests for bounded retry with exponential backoff."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from app.core.retry import calculate_retry_delay, with_retry


class FlakyCall:
    """Async callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception = ConnectionError("boom")):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryDelay:

    @given(
        attempt=st.integers(min_value=1, max_value=20),
        base_delay=st.floats(min_value=0.0, max_value=10.0),
    )
    @settings(max_examples=100)
    def test_delay_doubles_and_is_capped(self, attempt: int, base_delay: float):
        max_delay = 30.0
        delay = calculate_retry_delay(attempt, base_delay, max_delay)

        assert delay == min(base_delay * 2 ** (attempt - 1), max_delay)
        assert delay <= max_delay

    def test_default_schedule(self):
        assert [calculate_retry_delay(n, 1.0, 30.0) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_first_success_is_not_retried(self):
        call = FlakyCall(failures=0)

        assert await with_retry(call, attempts=3, base_delay=0) == "ok"
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_succeeds_within_attempts(self):
        call = FlakyCall(failures=2)

        assert await with_retry(call, attempts=3, base_delay=0) == "ok"
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_last_error_reraised_after_exhaustion(self):
        call = FlakyCall(failures=5, error=ConnectionError("still down"))

        with pytest.raises(ConnectionError, match="still down"):
            await with_retry(call, attempts=3, base_delay=0)
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        call = FlakyCall(failures=5, error=KeyError("bad request"))

        with pytest.raises(KeyError):
            await with_retry(call, attempts=3, base_delay=0, retry_on=(ConnectionError,))
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            await with_retry(FlakyCall(failures=0), attempts=0)

    @pytest.mark.asyncio
    async def test_lambda_returning_coroutine_is_awaited_and_retried(self):
        call = FlakyCall(failures=2)

        assert await with_retry(lambda: call(), attempts=3, base_delay=0) == "ok"
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_sync_function_in_thread_is_retried(self):
        calls = []

        def charge(amount: int) -> int:
            calls.append(amount)
            if len(calls) < 2:
                raise ConnectionError("card network timeout")
            return amount

        result = await with_retry(
            lambda: asyncio.to_thread(charge, 2000), attempts=3, base_delay=0
        )

        assert result == 2000
        assert calls == [2000, 2000]
