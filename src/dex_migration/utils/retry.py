"""Retry decorators for DEX API calls, built on tenacity.

Only transient remote failures are retried here. Anything that survives the
retries propagates to the batch, where the migration failure policy decides
what happens next.
"""

import inspect
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from dex_migration.client.exceptions import NetworkError, RateLimitError, ServerError
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, ServerError, RateLimitError)


def retry_with_backoff(
    max_attempts: int = 5,
    min_wait: float = 2,
    max_wait: float = 60,
    retry_on_exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
) -> Callable[[F], F]:
    """Retry with random exponential backoff.

    Works for both coroutine functions and plain functions.

    Args:
        max_attempts: Maximum number of attempts, including the first
        min_wait: Minimum wait between attempts in seconds
        max_wait: Maximum wait between attempts in seconds
        retry_on_exceptions: Exception types that trigger another attempt

    Returns:
        Decorator applying the retry policy
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
                retry=retry_if_exception_type(retry_on_exceptions),
                reraise=True,
            ):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    if attempt_number > 1:
                        logger.info(
                            "retry_attempt",
                            function=func.__name__,
                            attempt=attempt_number,
                            max_attempts=max_attempts,
                        )
                    return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            @retry(
                stop=stop_after_attempt(max_attempts),
                wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
                retry=retry_if_exception_type(retry_on_exceptions),
                reraise=True,
            )
            def _inner() -> Any:
                return func(*args, **kwargs)

            return _inner()

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper  # type: ignore

    return decorator


retry_api_call = retry_with_backoff(max_attempts=5, min_wait=2, max_wait=60)
retry_api_call_short = retry_with_backoff(max_attempts=3, min_wait=1, max_wait=10)
