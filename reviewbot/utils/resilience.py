"""
Resilience utilities for error handling and fault tolerance.

This module provides:
- TransientError / PermanentError base classes shared by all external clients
- retry_with_backoff decorator for transient errors
- backoff_delay helper used by the review queue retry schedule
"""

import asyncio
import logging
from typing import Callable, TypeVar, ParamSpec, Awaitable
from functools import wraps

logger = logging.getLogger(__name__)

# Type variables for generic decorator
P = ParamSpec('P')
T = TypeVar('T')


class TransientError(Exception):
    """Base class for transient errors that should be retried."""
    pass


class PermanentError(Exception):
    """Base class for errors that will not succeed on retry."""
    pass


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0
) -> float:
    """
    Compute the exponential backoff delay for a zero-based attempt number.

    Args:
        attempt: Attempt number (0 for the first retry)
        base_delay: Delay for the first retry in seconds
        max_delay: Upper bound for the delay in seconds
        exponential_base: Growth factor between attempts

    Returns:
        Delay in seconds
    """
    return min(base_delay * (exponential_base ** max(attempt, 0)), max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (TransientError,)
):
    """
    Decorator for retrying async functions with exponential backoff.

    Applied to idempotent GitHub reads and other external calls where a short
    in-process retry is cheaper than a full queue redelivery. Exceptions not
    listed in ``exceptions`` propagate immediately.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 60.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_retries=3, base_delay=1.0)
        async def fetch_files():
            return await github.get_changed_files(repo, pr)
    """
    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt + 1}/{max_retries}"
                        )

                    return result

                except exceptions as e:
                    if attempt == max_retries - 1:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} attempts: {e}"
                        )
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay, exponential_base)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt + 1}/{max_retries}: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )

                    await asyncio.sleep(delay)

            raise RuntimeError(f"{func.__name__} called with max_retries={max_retries}")

        return async_wrapper

    return decorator
