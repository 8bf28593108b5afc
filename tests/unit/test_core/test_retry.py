"""Tests for pixelvault.core.retry.

Covers:
    - retry until success with exponential backoff
    - terminal errors (4xx except 429, non-retryable) are never retried
    - retry budget exhaustion
    - Retry-After handling for rate limits
"""

import httpx
import pytest

from pixelvault.config import BackendType
from pixelvault.core.errors import (
    BackendError,
    InputValidationError,
    PayloadReason,
    PayloadValidationError,
    RateLimitError,
)
from pixelvault.core.retry import (
    DEFAULT_RETRY,
    LOCAL_RETRY,
    STATUS_RETRY,
    SUBMIT_RETRY,
    RetryPolicy,
    execute_with_retry,
    is_terminal,
)


class FlakyOperation:
    """Raises the queued errors in order, then returns the result."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def server_error():
    return BackendError("Internal error", BackendType.GEMINI, status_code=500)


@pytest.mark.fast
class TestRetryPolicy:
    def test_delay_grows_exponentially(self):
        policy = RetryPolicy(base_delay=1.0, backoff_factor=2.0, max_delay=10.0)
        assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_presets(self):
        assert DEFAULT_RETRY.max_retries == 3
        assert SUBMIT_RETRY.max_retries == 2
        assert SUBMIT_RETRY.base_delay == 2.0
        assert STATUS_RETRY.max_retries == 1
        assert STATUS_RETRY.base_delay == 5.0
        assert LOCAL_RETRY.max_retries == 1

    def test_max_retries_bounded(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=11)


@pytest.mark.fast
class TestIsTerminal:
    def test_client_errors_terminal(self):
        assert is_terminal(BackendError("nope", BackendType.OPENAI, status_code=404))
        assert is_terminal(InputValidationError("bad"))

    def test_rate_limit_not_terminal(self):
        assert not is_terminal(RateLimitError(BackendType.HORDE))

    def test_server_and_transport_errors_not_terminal(self):
        assert not is_terminal(server_error())
        assert not is_terminal(httpx.ConnectError("refused"))

    def test_httpx_status_error(self):
        request = httpx.Request("GET", "https://example.com")
        response = httpx.Response(400, request=request)
        error = httpx.HTTPStatusError("bad", request=request, response=response)
        assert is_terminal(error)


@pytest.mark.fast
class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_two_server_errors(self, sleeper):
        operation = FlakyOperation([server_error(), server_error()])
        result = await execute_with_retry(operation, DEFAULT_RETRY, sleep=sleeper)
        assert result == "ok"
        assert operation.calls == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, sleeper):
        operation = FlakyOperation(
            [BackendError("Model not found", BackendType.GEMINI, status_code=404)]
        )
        with pytest.raises(BackendError, match="Model not found"):
            await execute_with_retry(operation, DEFAULT_RETRY, sleep=sleeper)
        assert operation.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_payload_errors_are_not_retried(self, sleeper):
        operation = FlakyOperation(
            [PayloadValidationError("Invalid base64 encoding", PayloadReason.DECODE_FAILED)]
        )
        with pytest.raises(PayloadValidationError):
            await execute_with_retry(operation, DEFAULT_RETRY, sleep=sleeper)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self, sleeper):
        operation = FlakyOperation([server_error() for _ in range(10)])
        with pytest.raises(BackendError):
            await execute_with_retry(operation, SUBMIT_RETRY, sleep=sleeper)
        assert operation.calls == SUBMIT_RETRY.max_retries + 1
        assert sleeper.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, sleeper):
        operation = FlakyOperation([server_error()])
        with pytest.raises(BackendError):
            await execute_with_retry(operation, RetryPolicy(max_retries=0), sleep=sleeper)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limit_uses_retry_after(self, sleeper):
        operation = FlakyOperation([RateLimitError(BackendType.HORDE, retry_after=3)])
        await execute_with_retry(operation, DEFAULT_RETRY, sleep=sleeper)
        assert sleeper.delays == [3.0]

    @pytest.mark.asyncio
    async def test_retry_after_capped_by_max_delay(self, sleeper):
        operation = FlakyOperation([RateLimitError(BackendType.HORDE, retry_after=600)])
        await execute_with_retry(operation, DEFAULT_RETRY, sleep=sleeper)
        assert sleeper.delays == [DEFAULT_RETRY.max_delay]

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self, sleeper):
        operation = FlakyOperation([httpx.ConnectError("refused")])
        assert await execute_with_retry(operation, DEFAULT_RETRY, sleep=sleeper) == "ok"
        assert operation.calls == 2
