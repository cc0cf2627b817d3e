"""
Retry Helpers for Outbound HTTP Calls

Wraps calls to third-party APIs (email provider, etc.) with exponential
backoff so transient failures do not surface to the user immediately.
"""
import logging
import time
from functools import wraps
from typing import Callable

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """Exception that indicates an operation can be safely retried."""
    pass


def retry_on_failure(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    retryable_exceptions: tuple = (RetryableError,),
):
    """
    Decorator to retry an operation with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        retryable_exceptions: Tuple of exceptions that trigger retry

    Any argument may also be a zero-argument callable, resolved on every
    call, so settings can be read lazily.
    """
    def resolve(value):
        return value() if callable(value) else value

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            retries = resolve(max_retries)

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt >= retries:
                        logger.error(f"All retries failed for {func.__name__}: {str(e)}")
                        raise

                    delay = min(resolve(base_delay) * (2 ** attempt), resolve(max_delay))
                    logger.warning(
                        f"Retry {attempt + 1}/{retries} for {func.__name__} "
                        f"after {delay:.2f}s: {str(e)}"
                    )
                    time.sleep(delay)

        return wrapper
    return decorator
