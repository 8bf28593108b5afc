"""Generation orchestrator with backend fallback ladder.

The orchestrator validates a request, walks the fallback ladder for the
requested backend and stops at the first backend that succeeds. Synchronous
backends produce image bytes which are ingested into the CDN right away;
queue-based backends produce a job that is registered in the JobStore for
the poller to finish.

Ladder rules:
    - The requested backend is tried first, then the configured fallbacks.
    - Input, authentication and permission errors stop the ladder.
    - Rate limits, quota, server, network and bad-response errors move on
      to the next backend.
    - When every backend fails, LadderExhaustedError names all of them.

Examples:
    >>> orchestrator = GenerationOrchestrator(settings, backends, ingestor, store)
    >>> result = await orchestrator.orchestrate("a red fox in snow", GenerationSettings())
    >>> result.kind
    'pending'
    >>> result.job.progress
    20

Tests:
    - tests/unit/test_core/test_orchestrator.py
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from pixelvault.config import BackendType, Settings
from pixelvault.core.backends.base import GenerationBackend, PendingResult, ReadyResult
from pixelvault.core.errors import (
    BackendError,
    BackendNotConfiguredError,
    LadderExhaustedError,
)
from pixelvault.core.jobs import JobStore
from pixelvault.schemas.assets import Asset
from pixelvault.schemas.generation import GenerationSettings, validate_request
from pixelvault.schemas.jobs import GenerationJob
from pixelvault.storage.ingestor import AssetIngestor

logger = logging.getLogger(__name__)


class OrchestrationResult(BaseModel):
    """Outcome of a successful orchestration.

    Attributes:
        kind: "completed" when an asset was ingested, "pending" when a job
            was queued for polling
        backend: Backend that succeeded
        asset: Ingested asset (completed only)
        job: Registered job (pending only)
        metadata: Prompt, model, settings and timing details
        attempted: Backends tried, in order
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["completed", "pending"]
    backend: BackendType
    asset: Asset | None = None
    job: GenerationJob | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    attempted: list[BackendType] = Field(default_factory=list)


class GenerationOrchestrator:
    """Validates requests and runs them across the fallback ladder."""

    def __init__(
        self,
        settings: Settings,
        backends: dict[BackendType, GenerationBackend],
        ingestor: AssetIngestor,
        store: JobStore,
    ) -> None:
        self.settings = settings
        self.backends = backends
        self.ingestor = ingestor
        self.store = store

    def ladder_for(self, settings: GenerationSettings) -> list[BackendType]:
        primary = settings.backend or self.settings.DEFAULT_BACKEND
        return self.settings.get_ladder(primary)

    async def orchestrate(
        self,
        prompt: str,
        settings: GenerationSettings | None = None,
    ) -> OrchestrationResult:
        """Generate an image, falling back across backends.

        Args:
            prompt: Raw prompt text.
            settings: Generation settings (defaults applied when None).

        Returns:
            OrchestrationResult with either an asset or a pending job.

        Raises:
            InputValidationError: Invalid prompt or settings (no network calls).
            BackendError: A ladder-aborting error (bad input, auth, permission).
            IngestionError: The image was generated but could not be stored.
            LadderExhaustedError: Every backend in the ladder failed.
        """
        request = validate_request(prompt, settings)
        ladder = self.ladder_for(request.settings)
        logger.info(
            f"Orchestrating generation: prompt='{request.prompt[:50]}', "
            f"ladder={[b.value for b in ladder]}"
        )

        attempted: list[BackendType] = []
        errors: dict[BackendType, Exception] = {}
        last_error: Exception | None = None

        for backend_type in ladder:
            backend = self.backends.get(backend_type)
            attempted.append(backend_type)
            if backend is None:
                last_error = BackendNotConfiguredError(
                    backend_type, f"{backend_type.value} backend is not available"
                )
                errors[backend_type] = last_error
                continue

            try:
                result = await backend.generate(request.prompt, request.settings)
            except BackendError as e:
                errors[backend_type] = e
                last_error = e
                if e.aborts_ladder:
                    logger.error(f"{backend_type.value} failed with {e.reason.value}, stopping fallback: {e}")
                    raise
                logger.warning(f"{backend_type.value} failed ({e.reason.value}): {e}")
                continue
            except Exception as e:
                # Unclassified adapter failures never abort the ladder
                logger.exception(f"{backend_type.value} failed unexpectedly: {e}")
                errors[backend_type] = e
                last_error = e
                continue

            if attempted[0] != backend_type:
                logger.info(f"Fallback succeeded on {backend_type.value} after {attempted[:-1]}")
            return await self._finish(request.prompt, request.settings, backend_type, result, attempted)

        logger.error(f"All backends failed ({', '.join(b.value for b in attempted)}): {last_error}")
        raise LadderExhaustedError(attempted, errors, last_error)

    async def _finish(
        self,
        prompt: str,
        settings: GenerationSettings,
        backend_type: BackendType,
        result: ReadyResult | PendingResult,
        attempted: list[BackendType],
    ) -> OrchestrationResult:
        metadata: dict[str, Any] = {
            "prompt": prompt,
            "provider": backend_type.value,
            "model": result.model,
            "settings": settings.model_dump(mode="json", by_alias=True, exclude_none=True),
            "generatedAt": datetime.now(timezone.utc).isoformat(),
        }

        if isinstance(result, PendingResult):
            job = GenerationJob.create(
                prompt,
                settings,
                backend=backend_type,
                backend_job_handle=result.job_handle,
                queue_position=result.queue_position,
                kudos_cost=result.kudos,
            )
            # Only visible to the poller once fully built
            self.store.add(job)
            metadata.update(
                {"kudosCost": result.kudos or 0, "queuePosition": result.queue_position or 0}
            )
            logger.info(f"Job {job.id} queued on {backend_type.value} as {result.job_handle}")
            return OrchestrationResult(
                kind="pending",
                backend=backend_type,
                job=job,
                metadata=metadata,
                attempted=attempted,
            )

        asset = await self.ingestor.ingest(result.payload.data, result.payload.mime_type)
        return OrchestrationResult(
            kind="completed",
            backend=backend_type,
            asset=asset,
            metadata=metadata,
            attempted=attempted,
        )
