"""
Retry loop for GitHub API calls.

Every request goes through ``send_with_retry``:

- 429, and 403 responses that signal a rate limit, are retried. A
  ``Retry-After`` header wins; otherwise the delay is
  ``base_delay * multiplier ** attempt``.
- 5xx responses and transport errors are retried with the same backoff.
- 401 and every other 4xx fail immediately.

The attempt cap is a plain loop bound. Running out of attempts on rate
limits raises MaxRetriesExceededError so callers can tell it apart from
other failures.

Configuration:
    - Default attempts: 3 (total, including the first)
    - Default base delay: 1.0 seconds
    - Default multiplier: 2.0x per retry
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from specsync.core.exceptions import (
    AuthenticationError,
    MaxRetriesExceededError,
    RemoteError,
    RemoteNotFoundError,
    RemoteRequestError,
    RemoteServerError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

RATE_LIMIT_STATUS = 429
FORBIDDEN_STATUS = 403


class RetryPolicy:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Total attempts per call (default: 3)
        base_delay: Delay in seconds before the first retry (default: 1.0)
        multiplier: Exponential backoff multiplier (default: 2.0)
        max_delay: Upper bound for a single computed delay (default: 60.0)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
    ) -> None:
        """
        Raises:
            ValueError: If parameters are invalid
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """
        Backoff delay after a failed attempt.

        Args:
            attempt: Zero-based index of the attempt that just failed

        Returns:
            Delay in seconds
        """
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)


def parse_retry_after(response: httpx.Response) -> float | None:
    """
    Read the Retry-After header as seconds.

    Accepts both delta-seconds and an HTTP date. Returns None when the
    header is absent or unparseable.
    """
    value = response.headers.get("Retry-After")
    if value is None:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def is_rate_limited(response: httpx.Response) -> bool:
    """
    True if a response is a rate-limit rejection.

    429 always is. A 403 is one when it carries Retry-After or reports an
    exhausted quota; otherwise it is a permission error.
    """
    if response.status_code == RATE_LIMIT_STATUS:
        return True
    if response.status_code != FORBIDDEN_STATUS:
        return False
    if "Retry-After" in response.headers:
        return True
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    return "rate limit" in response.text.lower()


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text[:200]


def classify_response(response: httpx.Response, operation: str) -> RemoteError:
    """
    Map an error response to an exception.

    Args:
        response: Non-2xx response
        operation: Description of the call, e.g. "create issue"

    Returns:
        Exception instance to raise
    """
    status = response.status_code
    message = f"Failed to {operation} ({status}): {_error_detail(response)}"

    if status == 404:
        return RemoteNotFoundError(message, status_code=status, operation=operation)
    if status == 401 or (status == FORBIDDEN_STATUS and not is_rate_limited(response)):
        return AuthenticationError(message, status_code=status, operation=operation)
    if status >= 500:
        return RemoteServerError(message, status_code=status, operation=operation)
    return RemoteRequestError(message, status_code=status, operation=operation)


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    *,
    operation: str,
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """
    Perform a request, retrying rate limits and transient failures.

    Args:
        send: Coroutine factory that performs the request once
        policy: Attempt cap and backoff
        operation: Description of the call for logs and errors
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The first successful (2xx/3xx) response

    Raises:
        MaxRetriesExceededError: Every attempt was rate limited
        RemoteServerError: 5xx or transport failure on the last attempt
        AuthenticationError: 401, or 403 that is not a rate limit
        RemoteNotFoundError: 404
        RemoteRequestError: Any other 4xx
    """
    for attempt in range(policy.max_attempts):
        is_last = attempt + 1 >= policy.max_attempts

        try:
            response = await send()
        except httpx.TransportError as e:
            if is_last:
                raise RemoteServerError(
                    f"Failed to {operation}: {e}", operation=operation
                ) from e
            delay = policy.calculate_delay(attempt)
            logger.warning(
                "Network error during %s (%s), retrying after %.1fs (attempt %d/%d)",
                operation,
                e,
                delay,
                attempt + 1,
                policy.max_attempts,
            )
            await sleep(delay)
            continue

        if is_rate_limited(response):
            if is_last:
                break
            retry_after = parse_retry_after(response)
            delay = retry_after if retry_after is not None else policy.calculate_delay(attempt)
            logger.warning(
                "Rate limited during %s, retrying after %.1fs (attempt %d/%d)",
                operation,
                delay,
                attempt + 1,
                policy.max_attempts,
            )
            await sleep(delay)
            continue

        if response.status_code >= 500 and not is_last:
            delay = policy.calculate_delay(attempt)
            logger.warning(
                "Server error %d during %s, retrying after %.1fs (attempt %d/%d)",
                response.status_code,
                operation,
                delay,
                attempt + 1,
                policy.max_attempts,
            )
            await sleep(delay)
            continue

        if response.status_code >= 400:
            raise classify_response(response, operation)

        return response

    raise MaxRetriesExceededError(policy.max_attempts, operation=operation)
