"""
Retry Executor

Bounded retry with exponential backoff on top of tenacity. This is the only
retry primitive in the service: the processor's per-stage retry and every
sink delivery go through with_retry().

Backoff: base_delay * 2^attempt, so a 1s base waits 2s, 4s, 8s, ...
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """
    Errors opt out of retrying by carrying retryable=False.

    Unknown errors are assumed transient. Cancellation is never retried.
    """
    if not isinstance(error, Exception):
        return False
    return bool(getattr(error, "retryable", True))


def backoff_delay(attempt: int, base_delay: float) -> float:
    return base_delay * (2**attempt)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Invoke fn until it succeeds or max_attempts calls have been made.

    Args:
        fn: Zero-argument coroutine function to invoke
        max_attempts: Total number of calls, including the first one
        base_delay: Base delay in seconds for exponential backoff
        on_retry: Awaited with (attempt, error) before each backoff sleep
        sleep: Sleep coroutine (injectable for tests)

    Returns:
        fn's return value

    Raises:
        The error of the last attempt, or the first non-retryable error
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    async def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            f"Attempt {retry_state.attempt_number}/{max_attempts} failed ({error}); "
            f"retrying in {delay:.1f}s"
        )
        if on_retry is not None:
            await on_retry(retry_state.attempt_number, error)

    async def do_sleep(delay: float) -> None:
        await sleep(delay)

    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_attempts),
        # multiplier * 2^(n-1) with multiplier 2*base gives base * 2^n
        wait=wait_exponential(multiplier=base_delay * 2, exp_base=2),
        before_sleep=before_sleep,
        sleep=do_sleep,
        reraise=True,
    )

    try:
        return await retrying(fn)
    except Exception as e:
        if is_retryable(e):
            logger.warning(f"Giving up after {max_attempts} attempts: {e}")
        else:
            logger.debug(f"Non-retryable error: {e}")
        raise
