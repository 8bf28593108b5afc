"""Base generation backend abstraction layer.

This module defines the abstract base class and result types for image
generation backends. Each adapter translates the common (prompt, settings)
request into its backend's wire contract and returns either a ReadyResult
(image bytes in hand) or a PendingResult (a job handle to poll).

Examples:
    >>> from pixelvault.core.backends import build_backend
    >>> backend = build_backend(BackendType.GEMINI, settings)
    >>> result = await backend.generate("a red fox in snow", GenerationSettings())
    >>> result.kind
    'ready'

Tests:
    - tests/unit/test_core/test_backends.py
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Annotated, Any, Literal, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field

from pixelvault.config import BackendType, Settings
from pixelvault.core.errors import (
    AuthenticationError,
    BackendError,
    ErrorReason,
    PayloadValidationError,
    PermissionDeniedError,
    QuotaExhaustedError,
    RateLimitError,
)
from pixelvault.core.payload import validate_bytes
from pixelvault.core.retry import DEFAULT_RETRY, RetryPolicy, SleepFunc, execute_with_retry
from pixelvault.schemas.assets import ValidatedPayload
from pixelvault.schemas.generation import GenerationSettings

logger = logging.getLogger(__name__)

__all__ = [
    "BackendResult",
    "DOWNLOAD_TIMEOUT",
    "DEFAULT_TIMEOUT",
    "GenerationBackend",
    "PendingResult",
    "QueuedGenerationBackend",
    "ReadyResult",
]

DEFAULT_TIMEOUT = 30.0
DOWNLOAD_TIMEOUT = 30.0
USER_AGENT = "PixelVault/1.0"


class ReadyResult(BaseModel):
    """Backend produced an image synchronously.

    Attributes:
        payload: Validated image bytes
        source_url: Transient backend URL the bytes were downloaded from
        model: Model that produced the image
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["ready"] = "ready"
    payload: ValidatedPayload
    source_url: str | None = None
    model: str


class PendingResult(BaseModel):
    """Backend accepted a job that must be polled to completion.

    Attributes:
        job_handle: Opaque backend job identifier
        queue_position: Estimated position in the backend queue
        kudos: Backend-reported cost of the job
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"
    job_handle: str
    queue_position: int | None = None
    kudos: float | None = None
    model: str | None = None


BackendResult = Annotated[Union[ReadyResult, PendingResult], Field(discriminator="kind")]


class GenerationBackend(ABC):
    """Abstract base class for generation backends.

    All adapters inherit from this class and implement generate(). The base
    class owns the shared httpx client, HTTP error translation and image
    downloads, so adapters only deal with their own request and response
    shapes.

    Attributes:
        backend_type: The backend identifier
        timeout: Request timeout in seconds for the main generation call
        retry_policy: Retry policy for the main generation call
    """

    backend_type: BackendType
    timeout: float = DEFAULT_TIMEOUT
    retry_policy: RetryPolicy = DEFAULT_RETRY
    default_model: str = ""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize backend.

        Args:
            settings: Application settings (credentials, endpoints).
            client: Shared HTTP client. Created lazily when omitted.
            sleep: Sleep function used between retries.
        """
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(headers={"User-Agent": USER_AGENT})
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this backend created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def generate(self, prompt: str, settings: GenerationSettings) -> ReadyResult | PendingResult:
        """Generate an image (or submit a job) for a prompt.

        Args:
            prompt: Validated prompt text.
            settings: Validated generation settings.

        Returns:
            ReadyResult or PendingResult.

        Raises:
            BackendError: If the backend call fails after retries.
        """

    def model_for(self, settings: GenerationSettings) -> str:
        return settings.model or self.default_model

    async def _with_retry(self, operation, policy: RetryPolicy | None = None, label: str = "generate"):
        return await execute_with_retry(
            operation,
            policy or self.retry_policy,
            label=f"{self.backend_type.value}:{label}",
            sleep=self._sleep,
        )

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, converting transport failures to BackendError.

        Timeouts and connection errors become retryable NETWORK errors.
        """
        try:
            return await self.client.request(
                method, url, timeout=timeout or self.timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise BackendError(
                f"Request timeout after {timeout or self.timeout:.0f}s",
                self.backend_type,
                reason=ErrorReason.NETWORK,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.backend_type.value} HTTP error: {e}")
            raise BackendError(
                str(e) or e.__class__.__name__,
                self.backend_type,
                reason=ErrorReason.NETWORK,
            ) from e

    def _json_body(self, response: httpx.Response) -> dict[str, Any]:
        """Parse a successful response body that must be a JSON object.

        Raises:
            BackendError: BAD_RESPONSE (retryable) for non-JSON or non-object bodies.
        """
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                f"Invalid JSON response from {self.backend_type.value}",
                self.backend_type,
                reason=ErrorReason.BAD_RESPONSE,
            ) from e
        if not isinstance(data, dict):
            raise BackendError(
                f"Unexpected response shape from {self.backend_type.value}: {type(data).__name__}",
                self.backend_type,
                reason=ErrorReason.BAD_RESPONSE,
            )
        return data

    def _extract_error_message(self, response: httpx.Response) -> str:
        """Pull a human-readable message out of an error response."""
        fallback = f"{self.backend_type.value} API error (status: {response.status_code})"
        try:
            data = response.json()
        except ValueError:
            return response.text or fallback

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
            for key in ("message", "detail"):
                if data.get(key):
                    return str(data[key])
        return response.text or fallback

    def _handle_error(self, response: httpx.Response) -> None:
        """Convert HTTP error responses to typed backend errors.

        Raises:
            AuthenticationError: For 401 errors.
            PermissionDeniedError: For 403 errors.
            QuotaExhaustedError: For 429 errors that report an exhausted quota.
            RateLimitError: For other 429 errors.
            BackendError: For everything else.
        """
        message = self._extract_error_message(response)

        if response.status_code == 401:
            raise AuthenticationError(self.backend_type, message)
        if response.status_code == 403:
            raise PermissionDeniedError(self.backend_type, message)
        if response.status_code == 429:
            if "quota" in message.lower():
                raise QuotaExhaustedError(self.backend_type, message)
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                self.backend_type,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        raise BackendError(message, self.backend_type, status_code=response.status_code)

    async def download_image(self, url: str) -> ValidatedPayload:
        """Download a generated image from a transient backend URL.

        Args:
            url: Image URL returned by the backend.

        Returns:
            ValidatedPayload with the downloaded bytes.

        Raises:
            BackendError: On non-2xx status or non-image content.
            PayloadValidationError: If the image is truncated or too large.
        """

        async def _download() -> httpx.Response:
            response = await self._request(
                "GET",
                url,
                timeout=DOWNLOAD_TIMEOUT,
                headers={"User-Agent": USER_AGENT, "Accept": "image/*"},
            )
            if response.is_error:
                raise BackendError(
                    f"Failed to download generated image: {response.status_code} {response.reason_phrase}",
                    self.backend_type,
                    status_code=response.status_code,
                )
            return response

        response = await self._with_retry(_download, label="download")
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            raise BackendError(
                f"Downloaded content is not an image ({content_type or 'unknown type'})",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.BAD_RESPONSE,
            )
        try:
            return validate_bytes(response.content, content_type)
        except PayloadValidationError as e:
            raise BackendError(
                f"Invalid image from {self.backend_type.value}: {e}",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.PAYLOAD,
            ) from e


class QueuedGenerationBackend(GenerationBackend):
    """Backend whose generate() returns a PendingResult to be polled.

    The job poller depends only on this interface: check_status() reports
    progress, fetch_image() turns a finished job into bytes.
    """

    @abstractmethod
    async def check_status(self, job_handle: str) -> Any:
        """Fetch the backend's view of a submitted job."""

    @abstractmethod
    async def fetch_image(self, status: Any) -> ValidatedPayload:
        """Resolve a finished job's image into validated bytes."""
