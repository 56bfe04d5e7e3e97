"""Bounded retry with exponential backoff.

Wraps raw I/O calls made by the task store. Graph algorithms never
retry; they are pure and deterministic.
"""

import errno
import time
from collections.abc import Callable
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

from loguru import logger

T = TypeVar("T")

_TRANSIENT_ERRNOS = {
    errno.EAGAIN,
    errno.EBUSY,
    errno.EINTR,
    errno.ETIMEDOUT,
}


class ErrorCategory(str, Enum):
    """Coarse classification of a failure."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    AUTH = "auth"
    SYSTEM = "system"
    GENERIC = "generic"


def classify_error(exc: BaseException) -> ErrorCategory:
    """Classify an exception by type first, then by message.

    Args:
        exc: The exception to classify.

    Returns:
        The matching ErrorCategory.
    """
    if isinstance(exc, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorCategory.NETWORK
    if isinstance(exc, PermissionError):
        return ErrorCategory.AUTH
    if isinstance(exc, ValueError):
        return ErrorCategory.VALIDATION
    if isinstance(exc, OSError) and exc.errno == errno.ETIMEDOUT:
        return ErrorCategory.TIMEOUT

    message = str(exc).lower()
    if any(kw in message for kw in ("network", "connection refused", "unreachable")):
        return ErrorCategory.NETWORK
    if "timeout" in message or "timed out" in message:
        return ErrorCategory.TIMEOUT
    if "validation" in message or "invalid" in message:
        return ErrorCategory.VALIDATION
    if any(kw in message for kw in ("unauthorized", "forbidden", "permission")):
        return ErrorCategory.AUTH
    if isinstance(exc, OSError):
        return ErrorCategory.SYSTEM
    return ErrorCategory.GENERIC


def is_transient(exc: BaseException) -> bool:
    """Return True if retrying the failed call could succeed."""
    category = classify_error(exc)
    if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT):
        return True
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return True
    return False


def compute_delay(
    attempt: int,
    base_delay: float,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0,
) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    return min(base_delay * backoff_factor ** (attempt - 1), max_delay)


def retry_call(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    base_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` and retry transient failures with exponential backoff.

    Args:
        func: Callable to invoke.
        attempts: Total number of attempts (>= 1).
        base_delay: Delay before the first retry in seconds.
        backoff_factor: Multiplier applied per retry.
        max_delay: Upper bound for a single delay.
        should_retry: Predicate deciding whether an exception is retryable.
        sleep: Sleep function (injectable for tests).

    Returns:
        Whatever ``func`` returns.

    Raises:
        The last exception raised by ``func`` once attempts are exhausted
        or the failure is not retryable.

    Example:
        >>> data = retry_call(path.read_bytes, attempts=3)
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if attempt >= attempts or not should_retry(e):
                raise
            delay = compute_delay(attempt, base_delay, backoff_factor, max_delay)
            logger.warning(
                f"{getattr(func, '__name__', 'call')} failed "
                f"({classify_error(e).value}: {e}); "
                f"retrying in {delay:.2f}s (attempt {attempt + 1}/{attempts})"
            )
            sleep(delay)
            attempt += 1


def with_retry(
    attempts: int = 3,
    base_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator form of :func:`retry_call`."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return retry_call(
                func,
                *args,
                attempts=attempts,
                base_delay=base_delay,
                backoff_factor=backoff_factor,
                max_delay=max_delay,
                **kwargs,
            )

        return wrapper

    return decorator
