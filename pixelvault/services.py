"""Service wiring for the generation pipeline.

Builds the shared objects the API and the poller work with: one HTTP client,
the backend adapters, the CDN ingestor, the job store, the orchestrator, the
gallery bridge and the poller.

Examples:
    >>> async with httpx.AsyncClient() as client:
    ...     services = build_services(settings, client, get_session_factory())
    ...     result = await services.orchestrator.orchestrate("a red fox in snow")
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelvault.config import BackendType, Settings
from pixelvault.core.backends import GenerationBackend, build_backends
from pixelvault.core.jobs import JobStore
from pixelvault.core.orchestrator import GenerationOrchestrator
from pixelvault.core.poller import JobPoller
from pixelvault.gallery.bridge import GalleryPersistenceBridge, SqlGalleryBridge
from pixelvault.storage import AssetIngestor, StorageConfig


@dataclass
class Services:
    """Process-wide pipeline objects shared by request handlers."""

    settings: Settings
    backends: dict[BackendType, GenerationBackend]
    ingestor: AssetIngestor
    store: JobStore
    orchestrator: GenerationOrchestrator
    bridge: GalleryPersistenceBridge
    poller: JobPoller


def build_services(
    settings: Settings,
    client: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    """Wire the pipeline around one shared HTTP client."""
    backends = build_backends(settings, client)
    ingestor = AssetIngestor(StorageConfig.from_settings(settings), client=client)
    store = JobStore()
    bridge = SqlGalleryBridge(session_factory, ingestor)
    return Services(
        settings=settings,
        backends=backends,
        ingestor=ingestor,
        store=store,
        orchestrator=GenerationOrchestrator(settings, backends, ingestor, store),
        bridge=bridge,
        poller=JobPoller(
            store,
            backends,
            ingestor,
            bridge=bridge,
            interval=settings.POLL_INTERVAL_SECONDS,
        ),
    )
