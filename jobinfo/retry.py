"""
Retry logic with exponential backoff for transient transaction failures.

The info store never retries on its own; these helpers belong to the
transaction-management layer that wraps calls into it.
"""

import time
import functools
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        should_retry: Optional predicate; a caught exception for which it
            returns False is re-raised immediately

    Example:
        @exponential_backoff(max_retries=3, base_delay=0.05,
                             exceptions=(OperationalError,),
                             should_retry=is_transient_error)
        def save_checkpoint(session):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    last_exception = e

                    # Don't sleep after the last attempt
                    if attempt < max_retries:
                        current_delay = min(delay, max_delay)

                        if on_retry:
                            on_retry(attempt + 1, e, current_delay)

                        time.sleep(current_delay)
                        delay *= exponential_base
                    else:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

            raise RetryError(
                f"Unexpected retry exhaustion: {str(last_exception)}"
            ) from last_exception

        return wrapper
    return decorator


# SQLSTATE codes for serialization failure and deadlock.
TRANSIENT_SQLSTATES = {"40001", "40P01"}


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if a database exception is likely transient and worth retrying.

    Args:
        exception: Exception to check (a SQLAlchemy DBAPIError or the raw
            driver exception)

    Returns:
        True if the transaction can be retried as a whole
    """
    orig = getattr(exception, "orig", None) or exception
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True

    error_str = str(exception).lower()

    transient_keywords = [
        'database is locked',
        'could not serialize',
        'restart transaction',
        'deadlock',
        'timeout',
        'connection reset',
        'connection refused',
        'server closed the connection',
    ]

    return any(keyword in error_str for keyword in transient_keywords)
