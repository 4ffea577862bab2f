from __future__ import annotations

from typing import Callable, TypeVar, cast

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

T = TypeVar("T")


def batch_retry(
    *,
    max_attempts: int = 2,
    wait_seconds: float = 0.5,
    retry_on: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Create a fixed-wait retry decorator for one batch query.

    Works for both plain and coroutine functions (tenacity detects coroutines).
    The last exception is re-raised once ``max_attempts`` is exhausted.

    Args:
        max_attempts: Total number of attempts, including the first one
        wait_seconds: Wait time between attempts in seconds
        retry_on: Exception types that trigger another attempt

    Returns:
        A retry decorator function
    """
    return cast(
        Callable[[Callable[..., T]], Callable[..., T]],
        retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(wait_seconds),
            retry=retry_if_exception_type(retry_on),
            reraise=True,
        ),
    )
