"""Retry with exponential backoff for upstream fetches."""

import asyncio
import random
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool) -> float:
    """Delay before retry number attempt + 1 (attempt counts from 0)."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


def retry_with_backoff(
    max_attempts: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator for async retry with exponential backoff.

    Only exceptions listed in retryable_exceptions are retried; anything
    else propagates from the first attempt.

    Args:
        max_attempts: Total number of attempts
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound on any delay in seconds
        jitter: Randomize delays to spread simultaneous retries
        retryable_exceptions: Exception types worth another attempt

    Returns:
        Decorated async function with retry logic
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_attempts - 1:
                        logger.warning(
                            "retry_exhausted",
                            function=func.__name__,
                            max_attempts=max_attempts,
                            error=str(e),
                        )
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay, jitter)
                    logger.info(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        delay=round(delay, 2),
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("max_attempts must be at least 1")

        return wrapper

    return decorator
