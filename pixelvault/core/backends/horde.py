"""AI Horde (Stable Horde) job-queue backend.

AI Horde is a crowdsourced cluster: generate() only submits the job and
returns a PendingResult with the backend job id. The job poller then calls
check_status() until the job is done or faulted, and fetch_image() to turn
the finished generation into bytes.

AI Horde API docs: https://aihorde.net/api/

Examples:
    >>> backend = HordeBackend(settings)
    >>> pending = await backend.generate("a red fox in snow", GenerationSettings())
    >>> status = await backend.check_status(pending.job_handle)
    >>> status.done, status.queue_position
    (False, 3)

Tests:
    - tests/unit/test_core/test_backends.py::TestHordeBackend
"""

import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pixelvault.config import ANONYMOUS_HORDE_KEY, BackendType
from pixelvault.core.backends.base import PendingResult, QueuedGenerationBackend
from pixelvault.core.errors import BackendError, ErrorReason, PayloadValidationError
from pixelvault.core.payload import to_data_url, validate_data_url
from pixelvault.core.retry import STATUS_RETRY, SUBMIT_RETRY
from pixelvault.schemas.assets import ValidatedPayload
from pixelvault.schemas.generation import GenerationSettings

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1024
MAX_STEPS = 50
STATUS_TIMEOUT = 15.0
DEFAULT_SAMPLER = "k_euler"
DEFAULT_MODELS = ["stable_diffusion"]


class HordeGeneration(BaseModel):
    """One finished image inside a status response."""

    model_config = ConfigDict(extra="ignore")

    img: str | None = None
    model: str | None = None
    seed: str | int | None = None
    state: str | None = None
    worker_id: str | None = None
    worker_name: str | None = None


class HordeStatus(BaseModel):
    """Parsed /v2/generate/status response.

    Attributes:
        done: All requested images are finished
        faulted: The cluster gave up on the job
        waiting: Images still queued
        processing: Images currently on a worker
        finished: Images finished so far
        queue_position: Position in the global queue
        kudos: Kudos consumed
        wait_time: Estimated seconds remaining
        generations: Finished images
    """

    model_config = ConfigDict(extra="ignore")

    done: bool = False
    faulted: bool = False
    waiting: int = 0
    processing: int = 0
    finished: int = 0
    queue_position: int | None = None
    kudos: float | None = None
    wait_time: float | None = None
    is_possible: bool = True
    generations: list[HordeGeneration] = Field(default_factory=list)

    @property
    def first_image(self) -> str | None:
        return self.generations[0].img if self.generations else None


class HordeBackend(QueuedGenerationBackend):
    """AI Horde backend with asynchronous job submission."""

    backend_type = BackendType.HORDE
    timeout = 30.0
    retry_policy = SUBMIT_RETRY
    default_model = "stable_diffusion"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "apikey": self.settings.AI_HORDE_API_KEY,
            "Client-Agent": self.settings.CLIENT_AGENT,
        }

    def build_payload(self, prompt: str, settings: GenerationSettings) -> dict:
        """Build the async submit body, clamping size and steps to cluster limits."""
        width, height = settings.dimensions
        params: dict = {
            "width": min(width, MAX_DIMENSION),
            "height": min(height, MAX_DIMENSION),
            "steps": min(settings.steps, MAX_STEPS),
            "cfg_scale": settings.guidance,
            "sampler_name": settings.sampler or DEFAULT_SAMPLER,
            "models": settings.horde_models or list(DEFAULT_MODELS),
        }
        if settings.negative_prompt and settings.negative_prompt.strip():
            params["negative_prompt"] = settings.negative_prompt.strip()

        return {
            "prompt": prompt,
            "params": params,
            "nsfw": False,
            "censor_nsfw": True,
            "r2": True,
            "shared": True,
        }

    async def generate(self, prompt: str, settings: GenerationSettings) -> PendingResult:
        if self.settings.AI_HORDE_API_KEY == ANONYMOUS_HORDE_KEY:
            logger.warning("Using anonymous AI Horde key - register one for better queue priority")

        payload = self.build_payload(prompt, settings)

        async def _submit() -> dict:
            response = await self._request(
                "POST",
                f"{self.settings.AI_HORDE_BASE_URL}/v2/generate/async",
                json=payload,
                headers=self.headers,
            )
            if response.is_error:
                self._handle_error(response)
            return self._json_body(response)

        result = await self._with_retry(_submit, label="submit")
        job_id = result.get("id")
        if not job_id:
            raise BackendError(
                "No job ID returned from AI Horde",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.BAD_RESPONSE,
            )

        logger.info(f"AI Horde job submitted: {job_id} (queue position {result.get('queue_position')})")
        return PendingResult(
            job_handle=job_id,
            queue_position=result.get("queue_position"),
            kudos=result.get("kudos"),
            model=",".join(payload["params"]["models"]),
        )

    async def check_status(self, job_handle: str) -> HordeStatus:
        """Fetch the status of a submitted job.

        Args:
            job_handle: Job id returned by generate().

        Returns:
            Parsed HordeStatus.

        Raises:
            RateLimitError: If the status endpoint is rate limiting us.
            BackendError: If the check fails after retries.
        """

        async def _check() -> httpx.Response:
            response = await self._request(
                "GET",
                f"{self.settings.AI_HORDE_BASE_URL}/v2/generate/status/{job_handle}",
                timeout=STATUS_TIMEOUT,
                headers=self.headers,
            )
            if response.is_error:
                self._handle_error(response)
            return response

        response = await self._with_retry(_check, STATUS_RETRY, label="status")
        try:
            return HordeStatus.model_validate(self._json_body(response))
        except ValidationError as e:
            raise BackendError(
                f"Unexpected status response from AI Horde: {e.error_count()} invalid field(s)",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.BAD_RESPONSE,
            ) from e

    async def fetch_image(self, status: HordeStatus) -> ValidatedPayload:
        """Turn the first finished generation into validated bytes.

        The cluster returns either an R2 download URL or a bare base64 WebP
        body.

        Raises:
            BackendError: If the download fails.
            PayloadValidationError: If inline data is invalid.
        """
        image = status.first_image
        if not image:
            raise BackendError(
                "No image data in completed generation",
                self.backend_type,
                retryable=False,
                reason=ErrorReason.BAD_RESPONSE,
            )
        if image.startswith(("http://", "https://")):
            return await self.download_image(image)
        try:
            return validate_data_url(to_data_url(image, "image/webp"))
        except PayloadValidationError as e:
            logger.error(f"AI Horde returned invalid inline image: {e}")
            raise
