"""AI image generation API endpoints.

Endpoints:
    POST /api/v1/ai/generate-image - Generate (or queue) an image
    GET /api/v1/ai/horde-status/{job_id} - Status of a queued job
    GET /api/v1/ai/jobs - List tracked jobs
    GET /api/v1/ai/jobs/{job_id} - Get a tracked job
    DELETE /api/v1/ai/jobs/{job_id} - Stop tracking a job
    POST /api/v1/ai/save-generated-image - Ingest and save an image to the gallery

Examples:
    >>> POST /api/v1/ai/generate-image
    >>> {"prompt": "a red fox in snow", "settings": {"provider": "horde"}}
    >>>
    >>> # Response (queued)
    >>> {"success": true, "jobId": "...", "provider": "horde", "metadata": {...}}

Tests:
    - tests/unit/test_api/test_generation.py
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError

from pixelvault.api.deps import get_job_store, get_orchestrator, get_services
from pixelvault.config import BackendType
from pixelvault.core.errors import InputValidationError
from pixelvault.core.jobs import JobStore
from pixelvault.core.orchestrator import GenerationOrchestrator
from pixelvault.core.payload import validate_data_url
from pixelvault.gallery.bridge import build_save_request
from pixelvault.models import Visibility
from pixelvault.schemas.generation import GenerationSettings
from pixelvault.schemas.jobs import GenerationJob, JobStatus
from pixelvault.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


# Request/Response Models


class GenerateImageRequest(BaseModel):
    """Request to generate an image.

    Settings are accepted as a loose mapping and validated by the pipeline,
    so bad values produce a 400 with a readable message.
    """

    prompt: Any = Field(default=None, examples=["a red fox in snow"])
    settings: dict[str, Any] = Field(default_factory=dict)


class GenerateImageResponse(BaseModel):
    """Completed generations carry imageUrl/publicId, queued ones a jobId."""

    success: bool = True
    imageUrl: str | None = None
    publicId: str | None = None
    jobId: str | None = None
    provider: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobStatusResponse(BaseModel):
    """Queue status of a tracked job, as seen by the poller."""

    success: bool = True
    jobId: str
    status: JobStatus
    progress: int
    done: bool
    faulted: bool
    waiting: int = 0
    processing: int = 0
    finished: int = 0
    queue_position: int | None = None
    kudos: float | None = None
    wait_time: float | None = None
    imageUrl: str | None = None
    publicId: str | None = None
    metadata: dict[str, Any] | None = None
    error: str | None = None


class JobListResponse(BaseModel):
    jobs: list[GenerationJob]
    total: int


class DeleteJobResponse(BaseModel):
    id: str
    deleted: bool
    message: str


class SaveImageRequest(BaseModel):
    """Request to ingest an image and record it in the gallery."""

    imageUrl: str | None = None
    imageBase64: str | None = None
    prompt: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    provider: str | None = None
    title: str | None = None
    caption: str | None = None
    alt_text: str | None = None
    privacy: Visibility = Visibility.PRIVATE


class SaveImageResponse(BaseModel):
    success: bool = True
    imageId: int
    uuid: str
    savedUrl: str
    publicId: str
    thumbnailUrl: str | None = None
    image: dict[str, Any]


def parse_settings(raw: dict[str, Any]) -> GenerationSettings:
    """Parse loose request settings, reporting type errors as input errors."""
    try:
        return GenerationSettings.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise InputValidationError(f"Invalid setting '{field}': {first.get('msg')}") from e


def parse_backend(raw: str | None, default: BackendType) -> BackendType:
    if not raw:
        return default
    settings = parse_settings({"provider": raw})
    return settings.backend or default


# Endpoints


@router.post("/generate-image", response_model=GenerateImageResponse, response_model_exclude_none=True)
async def generate_image(
    request: GenerateImageRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerateImageResponse:
    """Generate an image, falling back across backends.

    Synchronous backends return the ingested image; queue backends return a
    jobId to poll via /ai/horde-status/{job_id}.

    Raises:
        InputValidationError: Invalid prompt or settings (400).
        BackendError: A backend rejected credentials or input (401/403/400).
        LadderExhaustedError: Every backend failed (502).
    """
    settings = parse_settings(request.settings)
    result = await orchestrator.orchestrate(request.prompt, settings)

    if result.kind == "pending":
        return GenerateImageResponse(
            jobId=result.job.id,
            provider=result.backend.value,
            metadata=result.metadata,
        )

    return GenerateImageResponse(
        imageUrl=result.asset.secure_url,
        publicId=result.asset.public_id,
        provider=result.backend.value,
        metadata=result.metadata,
    )


@router.get("/horde-status/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_horde_status(
    job_id: str,
    store: JobStore = Depends(get_job_store),
) -> JobStatusResponse:
    """Report a queued job's state as last observed by the poller."""
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")

    meta = job.metadata
    response = JobStatusResponse(
        jobId=job.id,
        status=job.status,
        progress=job.progress,
        done=job.status == JobStatus.COMPLETED,
        faulted=job.status == JobStatus.FAILED,
        waiting=meta.get("waiting", 0),
        processing=meta.get("processing", 0),
        finished=meta.get("finished", 0),
        queue_position=job.queue_position,
        kudos=meta.get("kudos", job.kudos_cost),
        wait_time=meta.get("wait_time"),
        error=job.error,
    )
    if job.result_asset is not None:
        response.imageUrl = job.result_asset.secure_url
        response.publicId = job.result_asset.public_id
        response.metadata = {
            "prompt": job.prompt,
            "provider": job.backend.value,
            "model": meta.get("model"),
            "worker": meta.get("worker_name"),
            "seed": meta.get("seed"),
            "savedImageId": meta.get("saved_image_id"),
            "generatedAt": job.updated_at.isoformat(),
        }
    return response


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    store: JobStore = Depends(get_job_store),
) -> JobListResponse:
    """List tracked generation jobs, oldest first."""
    jobs = store.list(status)
    return JobListResponse(jobs=jobs, total=len(jobs))


@router.get("/jobs/{job_id}", response_model=GenerationJob)
async def get_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
) -> GenerationJob:
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.delete("/jobs/{job_id}", response_model=DeleteJobResponse)
async def delete_job(
    job_id: str,
    services: Services = Depends(get_services),
) -> DeleteJobResponse:
    """Stop tracking a job. The backend job is left to expire on its own."""
    job = services.poller.forget(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    logger.info(f"Stopped tracking job {job_id} ({job.status.value})")
    return DeleteJobResponse(id=job_id, deleted=True, message="Job is no longer tracked")


@router.post("/save-generated-image", response_model=SaveImageResponse)
async def save_generated_image(
    request: SaveImageRequest,
    services: Services = Depends(get_services),
) -> SaveImageResponse:
    """Ingest an image (URL or base64 data URL) and record it in the gallery.

    Raises:
        InputValidationError: Missing image data or prompt (400).
        PayloadValidationError: Invalid base64 data (400).
        IngestionError: CDN upload failed (502).
    """
    if not (request.imageUrl or request.imageBase64) or not request.prompt:
        raise InputValidationError("Image data (URL or base64) and prompt are required")

    provider = parse_backend(request.provider, services.settings.DEFAULT_BACKEND)

    if request.imageBase64:
        payload = validate_data_url(request.imageBase64)
    else:
        payload = await services.backends[provider].download_image(request.imageUrl)

    asset = await services.ingestor.ingest(payload.data, payload.mime_type)
    save_request = build_save_request(
        request.prompt,
        request.settings,
        provider,
        asset,
        model=request.settings.get("model"),
        title=request.title,
        caption=request.caption,
        alt_text=request.alt_text,
        visibility=request.privacy,
    )
    record = await services.bridge.save(save_request)

    return SaveImageResponse(
        imageId=record.id,
        uuid=record.uuid,
        savedUrl=record.canonical_url,
        publicId=asset.public_id,
        thumbnailUrl=record.thumbnail_url,
        image=record.record,
    )
