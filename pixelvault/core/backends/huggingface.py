"""Hugging Face Inference API backend.

Synchronous backend returning raw image bytes. When a model is cold the API
answers with a JSON body carrying estimated_time instead of an image; that
case is reported as a retryable server error so the retry executor waits
for the model to load.

Tests:
    - tests/unit/test_core/test_backends.py::TestHuggingFaceBackend
"""

import logging

import httpx

from pixelvault.config import BackendType
from pixelvault.core.backends.base import GenerationBackend, ReadyResult
from pixelvault.core.errors import (
    BackendError,
    BackendNotConfiguredError,
    ErrorReason,
    PayloadValidationError,
)
from pixelvault.core.payload import validate_bytes
from pixelvault.schemas.generation import GenerationSettings

logger = logging.getLogger(__name__)

MAX_INFERENCE_STEPS = 30

# Diffusion families that accept the parameters block
_DIFFUSION_MARKERS = ("stable-diffusion", "flux", "FLUX")


class HuggingFaceBackend(GenerationBackend):
    """Inference API backend returning binary image bodies."""

    backend_type = BackendType.HUGGINGFACE
    timeout = 60.0
    default_model = "black-forest-labs/FLUX.1-schnell"

    def model_for(self, settings: GenerationSettings) -> str:
        return settings.hf_model or settings.model or self.default_model

    def build_payload(self, prompt: str, settings: GenerationSettings, model: str) -> dict:
        """Build the inference request body for a model.

        FLUX.1-schnell ignores explicit dimensions, so width and height are
        only sent to other diffusion models.
        """
        payload: dict = {"inputs": prompt}
        if any(marker in model for marker in _DIFFUSION_MARKERS):
            parameters: dict = {
                "negative_prompt": settings.negative_prompt or "",
                "num_inference_steps": min(settings.steps, MAX_INFERENCE_STEPS),
                "guidance_scale": settings.guidance,
            }
            if "FLUX.1-schnell" not in model:
                parameters["width"], parameters["height"] = settings.dimensions
            payload["parameters"] = parameters
        return payload

    def _json_error(self, response: httpx.Response) -> BackendError:
        """Translate a JSON body that came back instead of an image."""
        status_code = response.status_code if response.is_error else None
        try:
            data = response.json()
        except ValueError:
            data = {}

        if isinstance(data, dict) and data.get("estimated_time") is not None:
            return BackendError(
                f"Model is still loading. Estimated time: {data['estimated_time']} seconds",
                self.backend_type,
                status_code=503,
                retryable=True,
                reason=ErrorReason.SERVER,
            )
        if isinstance(data, dict) and data.get("error"):
            return BackendError(
                str(data["error"]),
                self.backend_type,
                status_code=status_code,
                reason=None if status_code else ErrorReason.BAD_RESPONSE,
            )
        if status_code:
            return BackendError(
                response.text or f"Hugging Face API error (status: {status_code})",
                self.backend_type,
                status_code=status_code,
            )
        return BackendError(
            "Invalid image response from Hugging Face",
            self.backend_type,
            reason=ErrorReason.BAD_RESPONSE,
        )

    async def generate(self, prompt: str, settings: GenerationSettings) -> ReadyResult:
        api_key = self.settings.HUGGING_FACE_API_KEY
        if not api_key:
            raise BackendNotConfiguredError(
                self.backend_type, "Hugging Face API key not configured"
            )

        model = self.model_for(settings)
        payload = self.build_payload(prompt, settings, model)
        logger.info(f"Hugging Face request: model={model}")

        async def _call() -> httpx.Response:
            response = await self._request(
                "POST",
                f"{self.settings.HUGGING_FACE_BASE_URL}/models/{model}",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
            if response.is_error:
                if response.status_code in (401, 403, 429):
                    self._handle_error(response)
                raise self._json_error(response)

            if not response.content:
                raise BackendError(
                    "Empty response from Hugging Face",
                    self.backend_type,
                    reason=ErrorReason.BAD_RESPONSE,
                )
            content_type = response.headers.get("content-type", "")
            if not content_type.startswith("image/"):
                raise self._json_error(response)
            return response

        response = await self._with_retry(_call)
        mime_type = response.headers["content-type"].split(";")[0].strip()
        try:
            image = validate_bytes(response.content, mime_type)
        except PayloadValidationError as e:
            raise BackendError(
                f"Invalid image from Hugging Face: {e}",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.PAYLOAD,
            ) from e

        return ReadyResult(payload=image, model=model)
