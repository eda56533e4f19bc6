from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Coroutine, Optional, TypeVar, cast

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from .exceptions import TransientError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def retry_transient(
    max_attempts: Optional[int] = 5,
    base_wait: float = 1.0,
    max_wait: float = 60.0,
) -> Callable[
    [Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]
]:
    """
    Decorator for retrying transient errors with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts; ``None`` retries forever.
        base_wait: Base wait time in seconds before exponential backoff.
        max_wait: Maximum wait time in seconds between retries.

    Raises:
        The last `TransientError` once attempts are exhausted. Any other
        exception propagates immediately.
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, T]],
    ) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        @retry(**transient_retry_kwargs(max_attempts, base_wait, max_wait))
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return cast(T, await func(*args, **kwargs))

        return wrapper

    return decorator


def transient_retrying(
    max_attempts: Optional[int] = 5,
    base_wait: float = 1.0,
    max_wait: float = 60.0,
) -> AsyncRetrying:
    """`AsyncRetrying` loop with the same policy as `retry_transient`."""
    return AsyncRetrying(**transient_retry_kwargs(max_attempts, base_wait, max_wait))


def transient_retry_kwargs(
    max_attempts: Optional[int], base_wait: float, max_wait: float
) -> dict[str, Any]:
    return {
        "stop": stop_never if max_attempts is None else stop_after_attempt(max_attempts),
        "wait": wait_exponential(multiplier=base_wait, max=max_wait, exp_base=2),
        "retry": retry_if_exception_type(TransientError),
        "before_sleep": before_sleep_log(logger, logging.WARNING),
        "reraise": True,
    }
