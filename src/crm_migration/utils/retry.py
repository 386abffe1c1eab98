"""Retry decorators using tenacity.

Retries live at the record-store client boundary only; the validation
engine itself never retries a query.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from crm_migration.client.exceptions import NetworkError, RateLimitError, ServerError
from crm_migration.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS = (
    httpx.NetworkError,
    httpx.TimeoutException,
    NetworkError,
    ServerError,
    RateLimitError,
)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log each retry attempt before sleeping."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "transient_error_retrying",
        function=getattr(retry_state.fn, "__name__", "unknown"),
        attempt=retry_state.attempt_number,
        error=str(exception) if exception else None,
    )


def retry_with_backoff(
    max_attempts: int = 3, min_wait: int = 1, max_wait: int = 30
) -> Callable[[F], F]:
    """Retry an async function on transient network, server and rate limit errors.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds

    Returns:
        Decorated coroutine function
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(max_attempts),
                    wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
                    retry=retry_if_exception_type(TRANSIENT_ERRORS),
                    before_sleep=_log_retry,
                    reraise=True,
                ):
                    with attempt:
                        return await func(*args, **kwargs)
            except TRANSIENT_ERRORS as e:
                logger.error(
                    "transient_error_retry_exhausted",
                    function=func.__name__,
                    error=str(e),
                    max_attempts=max_attempts,
                )
                raise

        return async_wrapper  # type: ignore

    return decorator

