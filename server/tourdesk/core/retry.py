"""Retry with exponential backoff for transient failures."""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Optional, ParamSpec, TypeVar

from .config import settings

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def retry(
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator for retrying failed coroutines with exponential backoff.

    Attempt ``n`` (zero based) waits ``backoff_seconds * 2**n`` before the next
    try. Limits default to the webhook settings and are read at call time.

    Args:
        max_attempts: Maximum number of attempts
        backoff_seconds: Initial backoff time in seconds
        retry_on: Exception types that trigger a retry; others propagate at once

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            attempts = max_attempts or settings.webhook_max_attempts
            backoff = settings.webhook_backoff_seconds if backoff_seconds is None else backoff_seconds

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == attempts - 1:
                        logger.error(
                            f"All {attempts} attempts failed for {func.__name__}",
                            extra={"error_type": type(e).__name__},
                        )
                        raise

                    wait_time = backoff * (2 ** attempt)
                    logger.warning(
                        f"Attempt {attempt + 1}/{attempts} failed for {func.__name__}, "
                        f"retrying in {wait_time}s",
                        extra={"error_type": type(e).__name__},
                    )
                    await asyncio.sleep(wait_time)

            raise RuntimeError("retry called with zero attempts")

        return wrapper

    return decorator
