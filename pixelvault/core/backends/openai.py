"""OpenAI DALL-E image generation backend.

Synchronous backend: the API returns a short-lived image URL which is
downloaded immediately so the bytes can be ingested into the CDN before the
URL expires.

OpenAI API docs: https://platform.openai.com/docs/api-reference/images

Tests:
    - tests/unit/test_core/test_backends.py::TestOpenAIBackend
"""

import logging

from pixelvault.config import BackendType
from pixelvault.core.backends.base import GenerationBackend, ReadyResult
from pixelvault.core.errors import BackendError, BackendNotConfiguredError, ErrorReason
from pixelvault.schemas.generation import GenerationSettings

logger = logging.getLogger(__name__)


class OpenAIBackend(GenerationBackend):
    """DALL-E backend returning a downloadable URL.

    Examples:
        >>> backend = OpenAIBackend(settings)
        >>> result = await backend.generate("a lighthouse at dusk", GenerationSettings())
        >>> result.source_url
        'https://oaidalleapiprodscus.blob.core.windows.net/...'
    """

    backend_type = BackendType.OPENAI
    timeout = 30.0
    default_model = "dall-e-3"

    async def generate(self, prompt: str, settings: GenerationSettings) -> ReadyResult:
        api_key = self.settings.OPENAI_API_KEY
        if not api_key:
            raise BackendNotConfiguredError(self.backend_type, "OpenAI API key not configured")

        model = self.model_for(settings)
        payload = {
            "model": model,
            "prompt": prompt,
            "n": 1,
            "size": settings.size,
            "quality": settings.quality or "standard",
            "style": settings.style or "vivid",
        }

        async def _call() -> str:
            response = await self._request(
                "POST",
                f"{self.settings.OPENAI_BASE_URL}/images/generations",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
            if response.is_error:
                self._handle_error(response)

            data = self._json_body(response).get("data")
            first = data[0] if isinstance(data, list) and data else None
            if not isinstance(first, dict) or not first.get("url"):
                raise BackendError(
                    "No image URL returned from OpenAI",
                    self.backend_type,
                    reason=ErrorReason.BAD_RESPONSE,
                )
            return first["url"]

        image_url = await self._with_retry(_call)
        logger.debug(f"OpenAI returned image URL, downloading ({model})")
        image = await self.download_image(image_url)
        return ReadyResult(payload=image, source_url=image_url, model=model)
