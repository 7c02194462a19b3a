"""Retry utilities for gateway reads.

Implements exponential backoff with jitter for transient failures. Only reads
(tag queries, payload downloads, status checks) are retried. Publishing is
never retried here; a failed record stays in the pending diff and is retried
on the next sync cycle.
"""

import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Error classification: Which errors should trigger retries?

class RetryableError(Exception):
    """Base class for errors that should trigger retries."""

    pass


class RateLimitError(RetryableError):
    """Gateway rate limit exceeded."""

    pass


class GatewayTimeoutError(RetryableError):
    """Request timeout."""

    pass


class GatewayConnectionError(RetryableError):
    """Network connection error."""

    pass


class ServerError(RetryableError):
    """Server-side error (5xx)."""

    pass


class NonRetryableError(Exception):
    """Base class for errors that should NOT trigger retries."""

    pass


class InvalidRequestError(NonRetryableError):
    """Invalid request parameters (4xx)."""

    pass


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        max_wait_seconds: float = 30,
        min_wait_seconds: float = 1,
        jitter: bool = True,
    ):
        """Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts (including initial)
            max_wait_seconds: Maximum wait time between retries
            min_wait_seconds: Minimum wait time between retries
            jitter: Whether to add jitter to wait times
        """
        self.max_attempts = max_attempts
        self.max_wait_seconds = max_wait_seconds
        self.min_wait_seconds = min_wait_seconds
        self.jitter = jitter


DEFAULT_RETRY_CONFIG = RetryConfig()

# Fast configuration for testing (minimal delays)
TEST_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    max_wait_seconds=0.1,
    min_wait_seconds=0.01,
    jitter=False,
)

DEFAULT_RETRY_ON: tuple[type[Exception], ...] = (
    RateLimitError,
    GatewayTimeoutError,
    GatewayConnectionError,
    ServerError,
)


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging.

    Args:
        retry_state: Tenacity retry state
    """
    if retry_state.outcome and retry_state.outcome.failed:
        exception = retry_state.outcome.exception()
        attempt_number = retry_state.attempt_number

        logger.warning(
            f"Retry attempt {attempt_number} failed: {type(exception).__name__}: {exception}"
        )


def with_retry(
    config: RetryConfig | None = None,
    retry_on: tuple[type[Exception], ...] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator adding retries with exponential backoff to a coroutine function.

    Usage:
        @with_retry()
        async def query():
            ...

        @with_retry(config=RetryConfig(max_attempts=5))
        async def important_query():
            ...

    Args:
        config: Retry configuration (uses DEFAULT_RETRY_CONFIG if None)
        retry_on: Exception types to retry on (all RetryableError subclasses if None)

    Returns:
        Decorated coroutine function with retry logic
    """
    config = config or DEFAULT_RETRY_CONFIG
    retry_on = retry_on or DEFAULT_RETRY_ON

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        # tenacity wraps coroutine functions with its async retrying loop
        retry_decorator = retry(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait_exponential_jitter(
                initial=config.min_wait_seconds,
                max=config.max_wait_seconds,
                jitter=config.max_wait_seconds if config.jitter else 0,
            ),
            retry=retry_if_exception_type(retry_on),
            before_sleep=log_retry_attempt,
            reraise=True,
        )
        retrying_func = retry_decorator(func)

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await retrying_func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Function {func.__name__} failed after {config.max_attempts} attempts: "
                    f"{type(e).__name__}: {e}"
                )
                raise

        return wrapper

    return decorator


def classify_http_error(status_code: int, error_message: str = "") -> Exception:
    """Classify an HTTP error status into a retryable or non-retryable error.

    Args:
        status_code: HTTP status code
        error_message: Error message from the gateway

    Returns:
        Appropriate exception instance
    """
    if status_code == 429:
        return RateLimitError(f"Rate limit exceeded: {error_message}")

    if 500 <= status_code < 600:
        return ServerError(f"Server error (HTTP {status_code}): {error_message}")

    if status_code == 408:
        return GatewayTimeoutError(f"Request timeout: {error_message}")

    if 400 <= status_code < 500:
        return InvalidRequestError(f"Invalid request (HTTP {status_code}): {error_message}")

    return NonRetryableError(f"HTTP error {status_code}: {error_message}")
