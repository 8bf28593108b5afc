"""Google Imagen backend via the Generative Language API.

Synchronous backend returning the image inline as base64 inside a
structured JSON body. The body is wrapped in a PNG data URL and run through
the payload validator before it is handed back.

Tests:
    - tests/unit/test_core/test_backends.py::TestGeminiBackend
"""

import logging

from pixelvault.config import BackendType
from pixelvault.core.backends.base import GenerationBackend, ReadyResult
from pixelvault.core.errors import (
    BackendError,
    BackendNotConfiguredError,
    ErrorReason,
    PayloadValidationError,
)
from pixelvault.core.payload import to_data_url, validate_data_url
from pixelvault.schemas.generation import GenerationSettings

logger = logging.getLogger(__name__)


class GeminiBackend(GenerationBackend):
    """Imagen backend returning inline base64 image data."""

    backend_type = BackendType.GEMINI
    timeout = 30.0
    default_model = "imagen-3.0-fast-001"

    async def generate(self, prompt: str, settings: GenerationSettings) -> ReadyResult:
        api_key = self.settings.GEMINI_API_KEY
        if not api_key:
            raise BackendNotConfiguredError(self.backend_type, "Gemini API key not configured")

        model = self.model_for(settings)
        generation_config: dict = {"sampleCount": 1}
        if settings.negative_prompt:
            generation_config["negativePrompt"] = settings.negative_prompt

        payload = {"prompt": prompt, "generationConfig": generation_config}

        async def _call() -> str:
            # key goes in params, never in a logged URL string
            response = await self._request(
                "POST",
                f"{self.settings.GEMINI_BASE_URL}/models/{model}:generateImage",
                params={"key": api_key},
                json=payload,
            )
            if response.is_error:
                self._handle_error(response)

            candidates = self._json_body(response).get("candidates")
            first = candidates[0] if isinstance(candidates, list) and candidates else None
            image = first.get("image") if isinstance(first, dict) else None
            image_data = image.get("generatedImage") if isinstance(image, dict) else None
            if not image_data or not isinstance(image_data, str):
                raise BackendError(
                    "No image data returned from Gemini",
                    self.backend_type,
                    reason=ErrorReason.BAD_RESPONSE,
                )
            return image_data

        image_data = await self._with_retry(_call)
        try:
            image = validate_data_url(to_data_url(image_data, "image/png"))
        except PayloadValidationError as e:
            raise BackendError(
                f"Invalid image from Gemini: {e}",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.PAYLOAD,
            ) from e

        return ReadyResult(payload=image, model=model)
