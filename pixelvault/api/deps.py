"""FastAPI dependencies resolving pipeline services from app state."""

from fastapi import Request

from pixelvault.core.jobs import JobStore
from pixelvault.core.orchestrator import GenerationOrchestrator
from pixelvault.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return get_services(request).orchestrator


def get_job_store(request: Request) -> JobStore:
    return get_services(request).store
