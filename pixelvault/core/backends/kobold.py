"""Self-hosted KoboldCpp backend.

KoboldCpp builds differ in what they expose, so the adapter probes the
instance first: /api/v1/model tells whether the loaded model advertises
image support, and an OPTIONS request tells whether the OpenAI-compatible
/v1/images/generations route exists. The response parser then accepts every
image field shape known builds return.

Tests:
    - tests/unit/test_core/test_backends.py::TestKoboldBackend
"""

import json
import logging
from typing import Any

from pixelvault.config import BackendType
from pixelvault.core.backends.base import GenerationBackend, ReadyResult
from pixelvault.core.errors import (
    BackendError,
    BackendNotConfiguredError,
    ErrorReason,
    PayloadValidationError,
)
from pixelvault.core.payload import find_embedded_data_url, to_data_url, validate_data_url
from pixelvault.core.retry import LOCAL_RETRY
from pixelvault.schemas.assets import ValidatedPayload
from pixelvault.schemas.generation import GenerationSettings

logger = logging.getLogger(__name__)

MODEL_PROBE_TIMEOUT = 5.0
ROUTE_PROBE_TIMEOUT = 3.0
IMAGE_CAPABILITY_MARKERS = ("vision", "image", "multimodal", "sd", "diffusion")


class KoboldBackend(GenerationBackend):
    """KoboldCpp backend for self-hosted image generation."""

    backend_type = BackendType.KOBOLD
    timeout = 90.0
    retry_policy = LOCAL_RETRY
    default_model = "koboldcpp-local"

    @property
    def base_url(self) -> str:
        if not self.settings.KOBOLD_API_URL:
            raise BackendNotConfiguredError(self.backend_type, "KoboldCpp API URL not configured")
        return self.settings.KOBOLD_API_URL

    @property
    def headers(self) -> dict[str, str]:
        headers = {"User-Agent": "PixelVault/1.0"}
        if self.settings.KOBOLD_API_KEY and self.settings.KOBOLD_API_KEY.strip():
            headers["Authorization"] = f"Bearer {self.settings.KOBOLD_API_KEY}"
        return headers

    async def supports_images(self) -> bool:
        """Check whether the loaded model advertises image capability."""
        try:
            response = await self._request(
                "GET",
                f"{self.base_url}/api/v1/model",
                timeout=MODEL_PROBE_TIMEOUT,
                headers=self.headers,
            )
        except BackendError as e:
            logger.info(f"Could not detect KoboldCpp image capability: {e}")
            return False
        if response.is_error:
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        model_name = str(data.get("result", "")) if isinstance(data, dict) else ""
        return any(marker in model_name for marker in IMAGE_CAPABILITY_MARKERS)

    async def has_openai_route(self) -> bool:
        """Check for the OpenAI-compatible images route (405 still means it exists)."""
        try:
            response = await self._request(
                "OPTIONS",
                f"{self.base_url}/v1/images/generations",
                timeout=ROUTE_PROBE_TIMEOUT,
                headers=self.headers,
            )
        except BackendError:
            return False
        return response.is_success or response.status_code == 405

    def build_payload(self, prompt: str, settings: GenerationSettings, openai_format: bool) -> dict:
        if openai_format:
            return {
                "prompt": prompt,
                "n": 1,
                "size": settings.size,
                "response_format": "b64_json",
            }

        width, height = settings.dimensions
        return {
            "prompt": f"Generate an image: {prompt}",
            "max_context_length": 2048,
            "max_length": 100,
            "rep_pen": 1.1,
            "temperature": 0.8,
            "top_p": 0.9,
            "top_k": 40,
            "image_prompt": prompt,
            "width": width,
            "height": height,
            "steps": settings.steps,
            "cfg_scale": settings.guidance,
            "negative_prompt": settings.negative_prompt or "",
            "sampler_name": settings.sampler or "euler",
            "batch_size": 1,
        }

    def _extract_error_message(self, response) -> str:
        if response.status_code == 404:
            return (
                "KoboldCpp endpoint not found. Please verify your KoboldCpp instance "
                "is running and supports image generation."
            )
        if response.status_code == 503:
            return (
                "KoboldCpp service unavailable. Please check if your instance is "
                "running and not overloaded."
            )
        return super()._extract_error_message(response)

    def _terminal(self, message: str) -> BackendError:
        return BackendError(
            message,
            self.backend_type,
            retryable=False,
            reason=ErrorReason.BAD_RESPONSE,
        )

    def extract_image(self, result: Any, openai_format: bool) -> str | None:
        """Find image data in a generation response.

        Returns:
            A data URL, an http(s) URL to download, or None.

        Raises:
            BackendError: If the instance answered with plain text.
        """
        if not isinstance(result, dict):
            return None

        data = result.get("data")
        if openai_format and isinstance(data, list) and data:
            first = data[0] if isinstance(data[0], dict) else {}
            if first.get("b64_json"):
                return to_data_url(first["b64_json"], "image/png")
            if first.get("url"):
                return first["url"]

        results = result.get("results")
        if isinstance(results, list) and results:
            first_result = results[0]
            if isinstance(first_result, dict):
                text = str(first_result.get("text", ""))
            else:
                text = str(first_result)
            embedded = find_embedded_data_url(text)
            if embedded:
                return embedded
            raise self._terminal(
                "KoboldCpp returned text response instead of image. This instance "
                f'may not support image generation. Response: "{text[:200]}..."'
            )

        for key in ("image", "generated_image"):
            if isinstance(result.get(key), str) and result[key]:
                return to_data_url(result[key], "image/png")

        images = result.get("images")
        if isinstance(images, list) and images and isinstance(images[0], str):
            return to_data_url(images[0], "image/png")

        return None

    async def generate(self, prompt: str, settings: GenerationSettings) -> ReadyResult:
        base_url = self.base_url
        image_capable = await self.supports_images()
        openai_format = await self.has_openai_route()
        endpoint = (
            f"{base_url}/v1/images/generations" if openai_format else f"{base_url}/api/v1/generate"
        )
        payload = self.build_payload(prompt, settings, openai_format)
        logger.info(
            f"KoboldCpp request: endpoint={endpoint}, openai_format={openai_format}, "
            f"image_capable={image_capable}, prompt_length={len(prompt)}"
        )

        async def _call() -> Any:
            response = await self._request("POST", endpoint, json=payload, headers=self.headers)
            if response.is_error:
                self._handle_error(response)
            try:
                return response.json()
            except ValueError as e:
                raise self._terminal("KoboldCpp returned a non-JSON response") from e

        result = await self._with_retry(_call)
        image_ref = self.extract_image(result, openai_format)
        if not image_ref:
            logger.error(f"No image data found in KoboldCpp response: {json.dumps(result)[:500]}")
            raise self._terminal(
                "KoboldCpp instance does not support image generation or returned an "
                f"unexpected response format: {json.dumps(result)[:200]}"
            )

        model = settings.model or self.default_model
        if image_ref.startswith(("http://", "https://")):
            image = await self.download_image(image_ref)
            return ReadyResult(payload=image, source_url=image_ref, model=model)

        return ReadyResult(payload=self._validate(image_ref), model=model)

    def _validate(self, data_url: str) -> ValidatedPayload:
        try:
            return validate_data_url(data_url)
        except PayloadValidationError as e:
            raise BackendError(
                f"Invalid image data from KoboldCpp: {e}",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.PAYLOAD,
            ) from e
