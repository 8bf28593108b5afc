"""Typed error taxonomy for the generation pipeline.

Every failure is classified where it is first observed: adapters turn HTTP
status codes into an ErrorReason, validators raise their own error types.
Downstream code (retry executor, fallback ladder, API layer) decides what to
do from these attributes instead of inspecting message text.

Examples:
    >>> from pixelvault.core.errors import BackendError, ErrorReason
    >>> err = BackendError("Model not found", BackendType.GEMINI, status_code=404)
    >>> err.reason
    <ErrorReason.NOT_FOUND: 'not_found'>
    >>> str(err)
    '[gemini] (404) Model not found'

Tests:
    - tests/unit/test_core/test_errors.py
"""

from __future__ import annotations

from enum import Enum

from pixelvault.config import BackendType

__all__ = [
    "AuthenticationError",
    "BackendError",
    "BackendNotConfiguredError",
    "ErrorReason",
    "IngestionError",
    "InputValidationError",
    "LadderExhaustedError",
    "PayloadReason",
    "PayloadValidationError",
    "PermissionDeniedError",
    "PixelVaultError",
    "QuotaExhaustedError",
    "RateLimitError",
    "reason_from_status",
]


class ErrorReason(str, Enum):
    """Why a backend call failed.

    INVALID_INPUT, UNAUTHORIZED and FORBIDDEN are permanent client-side
    problems; the fallback ladder stops on them.
    """

    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    QUOTA = "quota"
    SERVER = "server"
    NETWORK = "network"
    BAD_RESPONSE = "bad_response"
    NOT_CONFIGURED = "not_configured"
    PAYLOAD = "payload"


LADDER_ABORT_REASONS = frozenset(
    {ErrorReason.INVALID_INPUT, ErrorReason.UNAUTHORIZED, ErrorReason.FORBIDDEN}
)


def reason_from_status(status_code: int | None) -> ErrorReason:
    """Map an HTTP status code to an ErrorReason.

    Args:
        status_code: HTTP status, or None for transport-level failures.

    Returns:
        The matching ErrorReason.
    """
    if status_code is None:
        return ErrorReason.NETWORK
    if status_code in (400, 422):
        return ErrorReason.INVALID_INPUT
    if status_code == 401:
        return ErrorReason.UNAUTHORIZED
    if status_code == 403:
        return ErrorReason.FORBIDDEN
    if status_code == 404:
        return ErrorReason.NOT_FOUND
    if status_code == 429:
        return ErrorReason.RATE_LIMITED
    if status_code >= 500:
        return ErrorReason.SERVER
    return ErrorReason.BAD_RESPONSE


class PixelVaultError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        status_code: HTTP-like status when one applies
        retryable: Whether the retry executor may try again
    """

    status_code: int | None = None
    retryable: bool = False


class InputValidationError(PixelVaultError):
    """Prompt or settings rejected before any network call."""

    status_code = 400


class PayloadReason(str, Enum):
    """Why an inline image payload was rejected."""

    MALFORMED = "malformed"
    DECODE_FAILED = "decode_failed"
    TRUNCATED = "truncated"
    TOO_LARGE = "too_large"


class PayloadValidationError(PixelVaultError):
    """Inline image data is malformed, undecodable or out of size bounds."""

    def __init__(self, message: str, reason: PayloadReason) -> None:
        super().__init__(message)
        self.reason = reason


class IngestionError(PixelVaultError):
    """CDN upload failed or returned an untrusted response.

    The message always identifies the CDN so it is not mistaken for a
    generation failure.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class BackendError(PixelVaultError):
    """Base exception for generation backend errors.

    Attributes:
        backend: The backend that raised the error
        message: Error message
        status_code: HTTP status code (if applicable)
        retryable: Whether the error is retryable
        reason: Classified failure reason
    """

    def __init__(
        self,
        message: str,
        backend: BackendType,
        status_code: int | None = None,
        retryable: bool | None = None,
        reason: ErrorReason | None = None,
    ) -> None:
        """Initialize backend error.

        Args:
            message: Error message.
            backend: Backend that raised the error.
            status_code: HTTP status code (optional).
            retryable: Whether the error is retryable. Derived from the
                status code when omitted (5xx, 429 and transport errors).
            reason: Failure reason. Derived from the status code when omitted.
        """
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code
        self.reason = reason or reason_from_status(status_code)
        if retryable is None:
            retryable = self.reason in (
                ErrorReason.SERVER,
                ErrorReason.NETWORK,
                ErrorReason.RATE_LIMITED,
                ErrorReason.BAD_RESPONSE,
            )
        self.retryable = retryable

    @property
    def message(self) -> str:
        return self.args[0]

    @property
    def aborts_ladder(self) -> bool:
        """Whether trying further backends is pointless."""
        return self.reason in LADDER_ABORT_REASONS

    def __str__(self) -> str:
        parts = [f"[{self.backend.value}]", self.args[0]]
        if self.status_code:
            parts.insert(1, f"({self.status_code})")
        return " ".join(parts)


class RateLimitError(BackendError):
    """Rate limit exceeded error (temporary, retrying may help)."""

    def __init__(self, backend: BackendType, retry_after: int | None = None) -> None:
        message = "Rate limit exceeded"
        if retry_after:
            message += f", retry after {retry_after}s"
        super().__init__(
            message,
            backend,
            status_code=429,
            retryable=True,
            reason=ErrorReason.RATE_LIMITED,
        )
        self.retry_after = retry_after


class QuotaExhaustedError(BackendError):
    """Quota exhausted (retrying won't help until it resets).

    Unlike RateLimitError this skips retries, but it never aborts the
    ladder: another backend has its own quota.
    """

    def __init__(self, backend: BackendType, message: str | None = None) -> None:
        super().__init__(
            message or "Quota exhausted - fallback to alternative backend",
            backend,
            status_code=429,
            retryable=False,
            reason=ErrorReason.QUOTA,
        )


class AuthenticationError(BackendError):
    """Authentication failed error."""

    def __init__(self, backend: BackendType, message: str | None = None) -> None:
        super().__init__(
            message or "Authentication failed - check API key",
            backend,
            status_code=401,
            retryable=False,
            reason=ErrorReason.UNAUTHORIZED,
        )


class PermissionDeniedError(BackendError):
    """The credentials are valid but not allowed to use this resource."""

    def __init__(self, backend: BackendType, message: str | None = None) -> None:
        super().__init__(
            message or "Forbidden - key lacks access to this model",
            backend,
            status_code=403,
            retryable=False,
            reason=ErrorReason.FORBIDDEN,
        )


class BackendNotConfiguredError(BackendError):
    """Backend credentials or endpoint are missing from settings."""

    def __init__(self, backend: BackendType, message: str) -> None:
        super().__init__(
            message,
            backend,
            retryable=False,
            reason=ErrorReason.NOT_CONFIGURED,
        )


class LadderExhaustedError(PixelVaultError):
    """Every backend in the fallback ladder failed.

    Attributes:
        attempted: Backends tried, in order
        errors: Error raised by each attempted backend
        last_error: The final error observed
    """

    status_code = 502

    def __init__(
        self,
        attempted: list[BackendType],
        errors: dict[BackendType, Exception],
        last_error: Exception | None,
    ) -> None:
        names = ", ".join(b.value for b in attempted)
        detail = str(last_error) if last_error else "All AI backends failed"
        super().__init__(f"All backends failed ({names}). Last error: {detail}")
        self.attempted = attempted
        self.errors = errors
        self.last_error = last_error
