"""Caller-side retry with exponential backoff for whole evaluations.

The pipeline never retries on its own. Callers that want retries (the CLI
``--retries`` option) wrap the complete submission with this decorator.
Only errors flagged ``retryable`` (transport failures and model output
contract violations) are retried; validation, credential and auth errors
are raised immediately.
"""

import asyncio
import functools
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar, cast

from edugrade.errors import EvaluationError

# Configure logging
logger = logging.getLogger(__name__)

# Type variable for generic function decoration
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

# Retry configuration
MAX_RETRIES = 2
BASE_DELAY = 1.0  # seconds
MAX_JITTER = 1.0  # seconds


def should_retry(exception: BaseException) -> bool:
    """Only evaluation errors marked retryable are worth another attempt."""
    return isinstance(exception, EvaluationError) and exception.retryable


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
) -> Callable[[F], F]:
    """Decorator that re-runs an async callable with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts after the first call
        base_delay: Base delay in seconds for exponential backoff
        max_jitter: Maximum random jitter in seconds

    Returns:
        Decorated coroutine function with retry logic
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except EvaluationError as e:
                    if not should_retry(e) or attempt >= max_retries:
                        if attempt >= max_retries and should_retry(e):
                            logger.error(
                                f"{func.__name__} failed after {max_retries} retries: {e}"
                            )
                        raise

                    # Calculate exponential backoff with jitter
                    delay = (base_delay * (2**attempt)) + (random.random() * max_jitter)

                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    await asyncio.sleep(delay)

            raise RuntimeError("Unexpected retry loop exit")

        return cast(F, wrapper)

    return decorator
