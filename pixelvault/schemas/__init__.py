"""Pydantic schemas for generation requests, jobs and assets."""

from pixelvault.schemas.assets import Asset, ValidatedPayload
from pixelvault.schemas.generation import GenerationRequest, GenerationSettings, validate_request
from pixelvault.schemas.jobs import GenerationJob, JobStatus

__all__ = [
    "Asset",
    "GenerationJob",
    "GenerationRequest",
    "GenerationSettings",
    "JobStatus",
    "ValidatedPayload",
    "validate_request",
]
