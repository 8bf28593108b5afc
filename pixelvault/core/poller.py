"""Background job poller for queue-based backends.

Each tick checks every generating job concurrently, with at most one status
check in flight per job. Finished jobs are resolved to image bytes, ingested
into the CDN and saved to the gallery as private images. The poller is the
only writer of job progress after submission.

Tick outcomes per job:
    - rate limited: skipped until the next tick
    - still queued: progress recomputed (never decreases, capped at 90)
    - faulted: failed ("Image generation failed")
    - done: image fetched and ingested, job completed, gallery record saved
    - status check failing after retries: failed

Examples:
    >>> poller = JobPoller(store, backends, ingestor, bridge, interval=5.0)
    >>> await poller.tick()       # one pass, used by tests
    >>> await poller.start()      # background loop, used by the app
    >>> await poller.stop()

Tests:
    - tests/unit/test_core/test_poller.py
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from pixelvault.config import BackendType
from pixelvault.core.backends.base import GenerationBackend, QueuedGenerationBackend
from pixelvault.core.backends.horde import HordeStatus
from pixelvault.core.errors import QuotaExhaustedError, RateLimitError
from pixelvault.core.jobs import Completed, Failed, JobStore, Progressed
from pixelvault.gallery.bridge import GalleryPersistenceBridge, build_save_request
from pixelvault.models import Visibility
from pixelvault.schemas.jobs import GenerationJob
from pixelvault.storage.ingestor import AssetIngestor

logger = logging.getLogger(__name__)

STATUS_CHECK_FAILED = "Failed to check generation status"
GENERATION_FAULTED = "Image generation failed"
NO_IMAGE_DATA = "No image data in completed generation"


class JobPoller:
    """Drives generating jobs to a terminal state.

    Attributes:
        store: Shared job store
        backends: Backend adapters by type
        ingestor: CDN ingestor for finished images
        bridge: Gallery bridge for auto-saving finished images (optional)
        interval: Seconds between ticks
    """

    def __init__(
        self,
        store: JobStore,
        backends: dict[BackendType, GenerationBackend],
        ingestor: AssetIngestor,
        bridge: GalleryPersistenceBridge | None = None,
        interval: float = 5.0,
    ) -> None:
        self.store = store
        self.backends = backends
        self.ingestor = ingestor
        self.bridge = bridge
        self.interval = interval
        self._in_flight: set[str] = set()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> list[GenerationJob]:
        """Check every pollable job once.

        Returns:
            The jobs that were checked on this tick, after their update.
        """
        jobs = [job for job in self.store.pollable() if job.id not in self._in_flight]
        if not jobs:
            return []

        logger.debug(f"Polling {len(jobs)} generating job(s)")
        # Claimed before any check starts so an overlapping tick skips them
        self._in_flight.update(job.id for job in jobs)
        results = await asyncio.gather(*(self._check(job) for job in jobs))
        return [job for job in results if job is not None]

    async def _check(self, job: GenerationJob) -> GenerationJob | None:
        try:
            return await self._check_job(job)
        finally:
            self._in_flight.discard(job.id)

    async def _check_job(self, job: GenerationJob) -> GenerationJob | None:
        backend = self.backends.get(job.backend)
        if not isinstance(backend, QueuedGenerationBackend):
            logger.error(f"Job {job.id}: backend {job.backend.value} cannot be polled")
            return self.store.update(job.id, Failed(STATUS_CHECK_FAILED))

        try:
            status = await backend.check_status(job.backend_job_handle)
        except (RateLimitError, QuotaExhaustedError) as e:
            logger.info(f"Job {job.id}: status check rate limited, skipping this tick ({e})")
            return self.store.get(job.id)
        except Exception as e:
            logger.error(f"Job {job.id}: status check failed: {e}")
            return self.store.update(job.id, Failed(STATUS_CHECK_FAILED))

        logger.debug(
            f"Job {job.id} status: done={status.done}, faulted={status.faulted}, "
            f"queue_position={status.queue_position}, waiting={status.waiting}, "
            f"processing={status.processing}"
        )

        if status.faulted:
            logger.warning(f"Job {job.id}: generation faulted on {job.backend.value}")
            return self.store.update(job.id, Failed(GENERATION_FAULTED))

        if status.done:
            if not status.first_image:
                logger.error(f"Job {job.id}: done without image data")
                return self.store.update(job.id, Failed(NO_IMAGE_DATA))
            return await self._complete(job, backend, status)

        return self.store.update(
            job.id,
            Progressed(
                queue_position=status.queue_position,
                waiting=status.waiting,
                processing=status.processing,
                extra={
                    "finished": status.finished,
                    "wait_time": status.wait_time,
                    "kudos": status.kudos,
                },
            ),
        )

    async def _complete(
        self,
        job: GenerationJob,
        backend: QueuedGenerationBackend,
        status: HordeStatus,
    ) -> GenerationJob | None:
        try:
            payload = await backend.fetch_image(status)
            asset = await self.ingestor.ingest(payload.data, payload.mime_type)
        except Exception as e:
            logger.error(f"Job {job.id}: failed to process generated image: {e}")
            return self.store.update(job.id, Failed(f"Failed to process generated image: {e}"))

        generation = status.generations[0]
        extra = {
            "model": generation.model,
            "worker_name": generation.worker_name,
            "seed": generation.seed,
            "kudos": status.kudos,
        }

        if self.bridge is not None and job.id in self.store:
            request = build_save_request(
                job.prompt,
                job.settings,
                job.backend,
                asset,
                model=generation.model,
                visibility=Visibility.PRIVATE,
            )
            try:
                record = await self.bridge.save(request)
                extra["saved_image_id"] = record.id
                extra["saved_image_uuid"] = record.uuid
            except Exception as e:
                logger.error(f"Job {job.id}: image ingested but gallery save failed: {e}")

        logger.info(f"Job {job.id} completed: {asset.public_id}")
        return self.store.update(job.id, Completed(asset, extra=extra))

    def forget(self, job_id: str) -> GenerationJob | None:
        """Stop tracking a job without cancelling it on the backend."""
        return self.store.discard(job_id)

    async def _run(self) -> None:
        logger.info(f"Job poller started (interval {self.interval}s)")
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Job poller tick failed: {e}")
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        """Start the background polling task (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="pixelvault-job-poller")

    async def stop(self) -> None:
        """Cancel the background polling task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Job poller stopped")
