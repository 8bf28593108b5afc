"""Job store and pure job state transitions.

Jobs only ever change through apply_event(), which returns a new immutable
GenerationJob. Terminal jobs (completed/failed) are returned unchanged by
every event, so a late or duplicate poll result can never resurrect or
overwrite a finished job.

State machine:
    pending --Submitted--> generating --Progressed--> generating
    generating --Completed--> completed
    generating --Failed--> failed

Examples:
    >>> job = GenerationJob.create("a red fox", settings, backend_job_handle="abc")
    >>> job = apply_event(job, Progressed(queue_position=3))
    >>> job.progress
    70

Tests:
    - tests/unit/test_core/test_jobs.py
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from pixelvault.schemas.assets import Asset
from pixelvault.schemas.jobs import SUBMITTED_PROGRESS, GenerationJob, JobStatus

logger = logging.getLogger(__name__)

MAX_PENDING_PROGRESS = 90
MIN_QUEUED_PROGRESS = 10
PROGRESS_PER_POSITION = 10
PROGRESS_STEP = 5


@dataclass(frozen=True)
class Submitted:
    """The backend accepted the job."""

    job_handle: str
    queue_position: int | None = None
    kudos: float | None = None


@dataclass(frozen=True)
class Progressed:
    """A status check reported the job still in flight."""

    queue_position: int | None = None
    waiting: int = 0
    processing: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Completed:
    asset: Asset
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    reason: str


JobEvent = Union[Submitted, Progressed, Completed, Failed]


def compute_progress(previous: int, queue_position: int | None) -> int:
    """Estimate progress for a job that is still in flight.

    A known queue position maps to max(10, 100 - 10 * position); otherwise
    progress creeps forward by 5. The result never drops below the previous
    value and stays at or below 90 until the job actually completes.

    Args:
        previous: Progress reported on the last tick.
        queue_position: Queue position from the status check, if any.

    Returns:
        New progress value.
    """
    if queue_position:
        candidate = max(MIN_QUEUED_PROGRESS, 100 - PROGRESS_PER_POSITION * queue_position)
    else:
        candidate = min(MAX_PENDING_PROGRESS, previous + PROGRESS_STEP)
    return min(MAX_PENDING_PROGRESS, max(previous, candidate))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def apply_event(job: GenerationJob, event: JobEvent) -> GenerationJob:
    """Apply an event to a job and return the resulting job.

    Args:
        job: Current job value.
        event: Event to apply.

    Returns:
        The new job value (the same object when the job is terminal).
    """
    if job.status.is_terminal:
        logger.debug(f"Ignoring {type(event).__name__} for terminal job {job.id}")
        return job

    if isinstance(event, Submitted):
        return job.model_copy(
            update={
                "status": JobStatus.GENERATING,
                "progress": max(job.progress, SUBMITTED_PROGRESS),
                "backend_job_handle": event.job_handle,
                "queue_position": event.queue_position,
                "kudos_cost": event.kudos,
                "updated_at": _now(),
            }
        )

    if isinstance(event, Progressed):
        metadata = {
            **job.metadata,
            "waiting": event.waiting,
            "processing": event.processing,
            **event.extra,
        }
        return job.model_copy(
            update={
                "progress": compute_progress(job.progress, event.queue_position),
                "queue_position": event.queue_position,
                "metadata": metadata,
                "updated_at": _now(),
            }
        )

    if isinstance(event, Completed):
        return job.model_copy(
            update={
                "status": JobStatus.COMPLETED,
                "progress": 100,
                "result_asset": event.asset,
                "metadata": {**job.metadata, **event.extra},
                "backend_job_handle": None,
                "queue_position": None,
                "updated_at": _now(),
            }
        )

    if isinstance(event, Failed):
        return job.model_copy(
            update={
                "status": JobStatus.FAILED,
                "error": event.reason,
                "backend_job_handle": None,
                "updated_at": _now(),
            }
        )

    raise TypeError(f"Unknown job event: {event!r}")


class JobStore:
    """In-memory job registry keyed by job id.

    Shared by the orchestrator (which adds jobs after submission) and the
    poller (which replaces them as they progress). All access happens on one
    event loop, so no locking is needed.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, GenerationJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def add(self, job: GenerationJob) -> GenerationJob:
        if job.id in self._jobs:
            raise ValueError(f"Job {job.id} is already tracked")
        self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> GenerationJob | None:
        return self._jobs.get(job_id)

    def list(self, status: JobStatus | None = None) -> list[GenerationJob]:
        """List tracked jobs, oldest first, optionally filtered by status."""
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at)
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        return jobs

    def pollable(self) -> list[GenerationJob]:
        return [j for j in self._jobs.values() if j.is_pollable]

    def replace(self, job: GenerationJob) -> GenerationJob:
        """Store a new value for an already-tracked job.

        A job discarded while its status check was in flight stays discarded.
        """
        if job.id in self._jobs:
            self._jobs[job.id] = job
        return job

    def update(self, job_id: str, event: JobEvent) -> GenerationJob | None:
        """Apply an event to a tracked job and store the result."""
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return self.replace(apply_event(job, event))

    def discard(self, job_id: str) -> GenerationJob | None:
        """Stop tracking a job. The backend job itself is not cancelled."""
        return self._jobs.pop(job_id, None)
