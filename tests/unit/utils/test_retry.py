"""Tests for retry and error handling utilities."""

import inspect

import pytest

from podsync.utils.retry import (
    TEST_RETRY_CONFIG,
    GatewayConnectionError,
    GatewayTimeoutError,
    InvalidRequestError,
    NonRetryableError,
    RateLimitError,
    RetryableError,
    RetryConfig,
    ServerError,
    classify_http_error,
    with_retry,
)


class TestErrorClassification:
    """Test error classification."""

    def test_retryable_errors(self):
        """Test retryable error types."""
        for error_type in (RateLimitError, GatewayTimeoutError, GatewayConnectionError, ServerError):
            assert issubclass(error_type, RetryableError)

    def test_non_retryable_errors(self):
        """Test non-retryable error types."""
        assert issubclass(InvalidRequestError, NonRetryableError)
        assert not issubclass(InvalidRequestError, RetryableError)


class TestClassifyHttpError:
    """Test HTTP error classification."""

    def test_rate_limit_429(self):
        """Test 429 classified as rate limit."""
        error = classify_http_error(429, "Too many requests")
        assert isinstance(error, RateLimitError)
        assert "Rate limit exceeded" in str(error)

    def test_server_errors_5xx(self):
        """Test 5xx classified as server errors."""
        for status_code in [500, 502, 503, 504]:
            error = classify_http_error(status_code, "Server error")
            assert isinstance(error, ServerError)

    def test_timeout_408(self):
        """Test 408 classified as timeout."""
        error = classify_http_error(408, "Request timeout")
        assert isinstance(error, GatewayTimeoutError)

    def test_client_errors_4xx(self):
        """Test other 4xx classified as invalid request."""
        for status_code in [400, 401, 404, 422]:
            error = classify_http_error(status_code, "Bad request")
            assert isinstance(error, InvalidRequestError)
            assert f"HTTP {status_code}" in str(error)

    def test_unknown_error(self):
        """Test unknown status codes classified as non-retryable."""
        error = classify_http_error(999, "Unknown error")
        assert isinstance(error, NonRetryableError)
        assert not isinstance(error, InvalidRequestError)


class TestRetryConfig:
    """Test retry configuration."""

    def test_default_config(self):
        """Test default retry configuration."""
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.max_wait_seconds == 30
        assert config.min_wait_seconds == 1
        assert config.jitter is True

    def test_custom_config(self):
        """Test custom retry configuration."""
        config = RetryConfig(max_attempts=5, max_wait_seconds=120, min_wait_seconds=2, jitter=False)
        assert config.max_attempts == 5
        assert config.max_wait_seconds == 120
        assert config.min_wait_seconds == 2
        assert config.jitter is False


class TestWithRetryDecorator:
    """Test with_retry decorator."""

    @pytest.mark.asyncio
    async def test_success_no_retry(self):
        """Test successful call doesn't retry."""
        call_count = 0

        @with_retry()
        async def successful_call():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_call() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_retryable_error(self):
        """Test retries on retryable errors."""
        call_count = 0

        @with_retry(config=TEST_RETRY_CONFIG)
        async def failing_call():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ServerError("Server error")
            return "success"

        assert await failing_call() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_no_retry_on_non_retryable_error(self):
        """Test doesn't retry on non-retryable errors."""
        call_count = 0

        @with_retry()
        async def bad_request():
            nonlocal call_count
            call_count += 1
            raise InvalidRequestError("Invalid request")

        with pytest.raises(InvalidRequestError):
            await bad_request()

        assert call_count == 1  # No retries

    @pytest.mark.asyncio
    async def test_max_attempts_reached(self):
        """Test raises error after max attempts."""
        call_count = 0

        @with_retry(config=TEST_RETRY_CONFIG)
        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise RateLimitError("Rate limit")

        with pytest.raises(RateLimitError):
            await always_fails()

        assert call_count == TEST_RETRY_CONFIG.max_attempts

    @pytest.mark.asyncio
    async def test_custom_retry_on(self):
        """Test custom exception types for retry."""
        call_count = 0

        @with_retry(config=TEST_RETRY_CONFIG, retry_on=(GatewayTimeoutError,))
        async def timeout_only():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise GatewayTimeoutError("Timeout")
            return "success"

        assert await timeout_only() == "success"
        assert call_count == 2

        # RateLimitError is not in retry_on
        call_count = 0

        @with_retry(config=TEST_RETRY_CONFIG, retry_on=(GatewayTimeoutError,))
        async def rate_limited():
            nonlocal call_count
            call_count += 1
            raise RateLimitError("Rate limit")

        with pytest.raises(RateLimitError):
            await rate_limited()

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_preserves_function_metadata(self):
        """Test the wrapper keeps the wrapped function's name and docstring."""

        @with_retry()
        async def documented():
            """Docstring."""
            return None

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."

    @pytest.mark.asyncio
    async def test_wrapped_function_stays_a_coroutine_function(self):
        """Test the decorated function can still be awaited and retried."""
        attempts = []

        @with_retry(config=TEST_RETRY_CONFIG)
        async def flaky(value):
            attempts.append(value)
            if len(attempts) < 2:
                raise GatewayConnectionError("Connection reset")
            return value * 2

        assert inspect.iscoroutinefunction(flaky)
        assert await flaky(21) == 42
        assert attempts == [21, 21]
