"""Generation job schema.

A GenerationJob is created when a queue-based backend accepts a submission
and is then advanced only by the job poller. Jobs are immutable values: each
state change produces a new GenerationJob via the transition functions in
pixelvault.core.jobs.

Examples:
    >>> job = GenerationJob.create("a red fox in snow", settings, backend_job_handle="abc")
    >>> job.status
    <JobStatus.GENERATING: 'generating'>

Tests:
    - tests/unit/test_core/test_jobs.py
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pixelvault.config import BackendType
from pixelvault.schemas.assets import Asset
from pixelvault.schemas.generation import GenerationSettings

# Progress reported right after the backend accepted the job
SUBMITTED_PROGRESS = 20


class JobStatus(str, Enum):
    """Status of a generation job.

    States:
        PENDING: Created, not yet accepted by a backend
        GENERATING: Accepted; waiting on the backend queue
        COMPLETED: Image ingested (terminal)
        FAILED: Generation or ingestion failed (terminal)
    """

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationJob(BaseModel):
    """A generation tracked across submit and poll round trips.

    Attributes:
        id: Local job identifier returned to the caller
        prompt: Prompt text
        settings: Settings used for the submission
        backend: Backend holding the job
        status: Current state
        progress: Estimated completion 0-100
        result_asset: Ingested asset once completed
        backend_job_handle: Backend job id while generating
        queue_position: Last reported queue position
        kudos_cost: Backend-reported cost, when available
        error: Failure reason once failed
        metadata: Free-form diagnostics (waiting/processing counts, worker info)
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prompt: str
    settings: GenerationSettings
    backend: BackendType = BackendType.HORDE
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    result_asset: Asset | None = None
    backend_job_handle: str | None = None
    queue_position: int | None = None
    kudos_cost: float | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(
        cls,
        prompt: str,
        settings: GenerationSettings,
        backend: BackendType = BackendType.HORDE,
        backend_job_handle: str | None = None,
        queue_position: int | None = None,
        kudos_cost: float | None = None,
    ) -> "GenerationJob":
        """Create a job for a submission the backend has already accepted."""
        return cls(
            prompt=prompt,
            settings=settings,
            backend=backend,
            status=JobStatus.GENERATING,
            progress=SUBMITTED_PROGRESS,
            backend_job_handle=backend_job_handle,
            queue_position=queue_position,
            kudos_cost=kudos_cost,
        )

    @property
    def is_pollable(self) -> bool:
        """Whether the poller should check this job on the next tick."""
        return self.status == JobStatus.GENERATING and bool(self.backend_job_handle)
