"""Bounded retry with exponential backoff for outbound calls.

Every backend submission, status check, image download and CDN upload runs
through execute_with_retry. Client errors (HTTP 4xx other than 429) and
errors explicitly marked non-retryable are raised immediately; everything
else is retried with exponential backoff up to the policy's budget.

Examples:
    >>> from pixelvault.core.retry import DEFAULT_RETRY, execute_with_retry
    >>> result = await execute_with_retry(lambda: client.get(url), DEFAULT_RETRY)

Tests:
    - tests/unit/test_core/test_retry.py::TestExecuteWithRetry
    - tests/unit/test_core/test_retry.py::TestRetryPolicy
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field

from pixelvault.core.errors import PixelVaultError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Retry budget and backoff curve for one call site.

    Attributes:
        max_retries: Additional attempts after the first one
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound on any single delay, in seconds
        backoff_factor: Multiplier applied per attempt

    Examples:
        >>> policy = RetryPolicy(max_retries=2, base_delay=2.0)
        >>> policy.delay_for(1)
        4.0
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given zero-based failed attempt."""
        return min(self.base_delay * self.backoff_factor**attempt, self.max_delay)


# Default policy for synchronous backends and CDN uploads
DEFAULT_RETRY = RetryPolicy()

# Job-queue submission: the backend rate-limits aggressively on its own
SUBMIT_RETRY = RetryPolicy(max_retries=2, base_delay=2.0, max_delay=10.0)

# Job status polling: one retry with a 5s floor
STATUS_RETRY = RetryPolicy(max_retries=1, base_delay=5.0, max_delay=10.0)

# Self-hosted inference: slow, so one long-spaced retry
LOCAL_RETRY = RetryPolicy(max_retries=1, base_delay=5.0, max_delay=20.0)


def error_status(error: BaseException) -> int | None:
    """Extract an HTTP-like status code from an error, if it carries one."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_terminal(error: BaseException) -> bool:
    """Check whether an error must not be retried.

    Args:
        error: The raised exception.

    Returns:
        True for 4xx statuses other than 429, and for pipeline errors
        explicitly marked non-retryable.
    """
    status = error_status(error)
    if status is not None and 400 <= status < 500 and status != 429:
        return True
    if isinstance(error, PixelVaultError) and not error.retryable:
        return True
    return False


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY,
    *,
    label: str = "operation",
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Run an async operation with bounded retries and exponential backoff.

    Args:
        operation: Zero-argument callable returning an awaitable.
        policy: Retry budget and backoff curve.
        label: Name used in log lines.
        sleep: Awaitable sleep function (injectable for tests).

    Returns:
        The operation's result.

    Raises:
        Exception: The first terminal error, or the last error once the
            retry budget is exhausted.
    """
    total = policy.max_retries + 1

    for attempt in range(total):
        try:
            return await operation()
        except Exception as e:
            if is_terminal(e):
                logger.info(f"{label}: terminal error on attempt {attempt + 1}, not retrying: {e}")
                raise
            if attempt == policy.max_retries:
                logger.warning(f"{label}: giving up after {total} attempts: {e}")
                raise

            delay = policy.delay_for(attempt)
            if isinstance(e, RateLimitError) and e.retry_after:
                delay = min(float(e.retry_after), policy.max_delay)

            logger.warning(
                f"{label}: attempt {attempt + 1}/{total} failed, "
                f"retrying in {delay:.1f}s: {e}"
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
