"""
Tests for the GitHub retry loop.
"""

import httpx
import pytest

from specsync.core.exceptions import (
    AuthenticationError,
    MaxRetriesExceededError,
    RemoteNotFoundError,
    RemoteRequestError,
    RemoteServerError,
)
from specsync.core.github.retry import (
    RetryPolicy,
    is_rate_limited,
    parse_retry_after,
    send_with_retry,
)


def _sender(*responses):
    """Coroutine factory returning the given responses (or raising) in order."""
    queue = list(responses)
    calls = []

    async def send() -> httpx.Response:
        calls.append(1)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    send.calls = calls
    return send


def _response(status: int, *, headers: dict | None = None, message: str = "error") -> httpx.Response:
    return httpx.Response(status, json={"message": message}, headers=headers or {})


class TestRetryPolicy:
    """Test backoff math."""

    def test_delays_double(self):
        """Test the delay doubles per attempt."""
        policy = RetryPolicy(base_delay=1.0)
        assert [policy.calculate_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_max_delay(self):
        """Test the cap."""
        assert RetryPolicy(base_delay=10.0, max_delay=15.0).calculate_delay(3) == 15.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1.0}, {"multiplier": 0.5}],
    )
    def test_invalid(self, kwargs):
        """Test nonsense parameters are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRateLimitDetection:
    """Test which responses count as rate limits."""

    def test_429(self):
        """Test 429 always counts."""
        assert is_rate_limited(_response(429))

    def test_403_with_retry_after(self):
        """Test 403 with Retry-After counts."""
        assert is_rate_limited(_response(403, headers={"Retry-After": "5"}))

    def test_403_with_exhausted_quota(self):
        """Test 403 with no remaining quota counts."""
        assert is_rate_limited(_response(403, headers={"X-RateLimit-Remaining": "0"}))

    def test_403_with_message(self):
        """Test a secondary rate limit message counts."""
        assert is_rate_limited(_response(403, message="You have exceeded a secondary rate limit"))

    def test_plain_403(self):
        """Test a permission error does not count."""
        assert not is_rate_limited(_response(403, message="Resource not accessible"))

    def test_retry_after_parsing(self):
        """Test seconds, HTTP dates and junk."""
        assert parse_retry_after(_response(429, headers={"Retry-After": "3"})) == 3.0
        assert parse_retry_after(_response(429, headers={"Retry-After": "soon"})) is None
        assert parse_retry_after(_response(429)) is None
        past = "Wed, 21 Oct 2015 07:28:00 GMT"
        assert parse_retry_after(_response(429, headers={"Retry-After": past})) == 0.0


class TestSendWithRetry:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, fake_sleep, sleeps):
        """Test no sleeping on success."""
        send = _sender(httpx.Response(200, json={}))
        response = await send_with_retry(send, RetryPolicy(), operation="get", sleep=fake_sleep)
        assert response.status_code == 200
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_retry_after_honored(self, fake_sleep, sleeps):
        """Test the server's Retry-After wins over backoff."""
        send = _sender(_response(429, headers={"Retry-After": "7"}), httpx.Response(200, json={}))
        await send_with_retry(send, RetryPolicy(), operation="get", sleep=fake_sleep)
        assert sleeps == [7.0]

    @pytest.mark.asyncio
    async def test_server_errors_back_off(self, fake_sleep, sleeps):
        """Test 5xx retries with doubling delays."""
        send = _sender(_response(502), _response(503), httpx.Response(201, json={}))
        response = await send_with_retry(
            send, RetryPolicy(max_attempts=3), operation="create issue", sleep=fake_sleep
        )
        assert response.status_code == 201
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_max_retries_exceeded(self, fake_sleep, sleeps):
        """Test persistent rate limiting raises after the attempt cap."""
        send = _sender(*[_response(429) for _ in range(3)])
        with pytest.raises(MaxRetriesExceededError) as exc_info:
            await send_with_retry(send, RetryPolicy(max_attempts=3), operation="get", sleep=fake_sleep)

        assert exc_info.value.attempts == 3
        assert len(send.calls) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_error_exhausted(self, fake_sleep):
        """Test a 5xx on the last attempt raises RemoteServerError."""
        send = _sender(_response(500), _response(500))
        with pytest.raises(RemoteServerError) as exc_info:
            await send_with_retry(send, RetryPolicy(max_attempts=2), operation="get", sleep=fake_sleep)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, fake_sleep, sleeps):
        """Test connection failures are retried."""
        send = _sender(httpx.ConnectError("refused"), httpx.Response(200, json={}))
        await send_with_retry(send, RetryPolicy(), operation="get", sleep=fake_sleep)
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_transport_error_exhausted(self, fake_sleep):
        """Test the last transport failure surfaces as RemoteServerError."""
        send = _sender(httpx.ConnectError("refused"))
        with pytest.raises(RemoteServerError):
            await send_with_retry(send, RetryPolicy(max_attempts=1), operation="get", sleep=fake_sleep)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, RemoteNotFoundError),
            (422, RemoteRequestError),
        ],
    )
    async def test_client_errors_not_retried(self, fake_sleep, sleeps, status, error):
        """Test 4xx (other than rate limits) fail on the first attempt."""
        send = _sender(_response(status, message="Bad credentials"))
        with pytest.raises(error) as exc_info:
            await send_with_retry(send, RetryPolicy(), operation="get issue", sleep=fake_sleep)

        assert len(send.calls) == 1
        assert sleeps == []
        assert "get issue" in str(exc_info.value)
        assert "Bad credentials" in str(exc_info.value)
