"""Bounded retry with exponential backoff for calls to external services.

Delay before retry ``n`` is ``base_delay * 2 ** (n - 1)`` capped at
``max_delay``; once ``attempts`` calls have failed the last exception is
re-raised unchanged so callers can surface it.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.core.logging import log_warning

logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_retry_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
) -> float:
    """Delay in seconds after the given failed attempt (1-based)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def _log_before_sleep(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log_warning(
            logger,
            f"{operation} failed, retrying",
            operation=operation,
            attempt=retry_state.attempt_number,
            retry_in_seconds=delay,
            error=str(exc),
        )

    return _before_sleep


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str = "operation",
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` calls have failed.

    Args:
        fn: Zero-argument callable returning an awaitable
        operation: Name used in retry log lines
        attempts: Maximum number of calls (default STRIPE_RETRY_ATTEMPTS)
        base_delay: Delay after the first failure in seconds
        max_delay: Upper bound for any single delay in seconds
        retry_on: Exception types that trigger a retry; others propagate at once

    Returns:
        The value returned by the first successful call

    Raises:
        The exception raised by the last attempt
    """
    if attempts is None:
        attempts = settings.STRIPE_RETRY_ATTEMPTS
    if base_delay is None:
        base_delay = settings.STRIPE_RETRY_BASE_DELAY_SECONDS
    if max_delay is None:
        max_delay = settings.STRIPE_RETRY_MAX_DELAY_SECONDS
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_before_sleep(operation),
        reraise=True,
    )
    # fn may be a plain callable returning an awaitable, so await it per attempt
    async for attempt in retrying:
        with attempt:
            result = await fn()
    return result
