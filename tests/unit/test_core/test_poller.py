"""Tests for pixelvault.core.poller.

Covers:
    - progress updates while queued (monotonic, capped at 90)
    - faulted, failing and empty completions
    - completion: fetch, ingest, gallery auto-save
    - rate-limited and quota-limited checks skipped
    - any failure while processing a finished job fails it
    - one status check in flight per job
    - start/stop lifecycle
    - end-to-end: submit, poll to completion, private gallery record
"""

import asyncio
import json

import httpx
import pytest

from pixelvault.config import BackendType
from pixelvault.core.backends import HordeBackend, QueuedGenerationBackend
from pixelvault.core.backends.horde import HordeStatus
from pixelvault.core.errors import BackendError, IngestionError, RateLimitError
from pixelvault.core.jobs import JobStore
from pixelvault.core.orchestrator import GenerationOrchestrator
from pixelvault.core.poller import (
    GENERATION_FAULTED,
    NO_IMAGE_DATA,
    STATUS_CHECK_FAILED,
    JobPoller,
)
from pixelvault.gallery.bridge import SavedRecord
from pixelvault.models import Visibility
from pixelvault.schemas.assets import ValidatedPayload
from pixelvault.schemas.generation import GenerationSettings
from pixelvault.schemas.jobs import GenerationJob, JobStatus
from pixelvault.storage import AssetIngestor, StorageConfig


class ScriptedHorde(QueuedGenerationBackend):
    """Queued backend replaying a script of status results."""

    backend_type = BackendType.HORDE

    def __init__(self, settings, statuses, payload=None):
        super().__init__(settings)
        self.statuses = list(statuses)
        self.payload = payload
        self.checks = 0
        self.gate: asyncio.Event | None = None

    async def generate(self, prompt, settings):
        raise NotImplementedError

    async def check_status(self, job_handle):
        self.checks += 1
        if self.gate is not None:
            await self.gate.wait()
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    async def fetch_image(self, status):
        return self.payload


class RecordingBridge:
    def __init__(self, fail=False):
        self.requests = []
        self.fail = fail

    async def save(self, request):
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("database is locked")
        return SavedRecord(
            id=len(self.requests),
            uuid=f"uuid-{len(self.requests)}",
            canonical_url=request.asset.secure_url,
        )


class StubIngestor:
    def __init__(self, asset, error=None):
        self.asset = asset
        self.error = error
        self.calls = []

    async def ingest(self, data, mime_type):
        self.calls.append((data, mime_type))
        if self.error:
            raise self.error
        return self.asset


def done_status(img="aW1n", **extra):
    return HordeStatus(
        done=True,
        finished=1,
        kudos=12.0,
        generations=[{"img": img, "model": "stable_diffusion", "seed": "42", "worker_name": "fox-worker"}],
        **extra,
    )


def queued(position, waiting=1, processing=0):
    return HordeStatus(queue_position=position, waiting=waiting, processing=processing, wait_time=30)


@pytest.fixture
def store():
    return JobStore()


@pytest.fixture
def job(store):
    return store.add(
        GenerationJob.create("a red fox in snow", GenerationSettings(), backend_job_handle="horde-1")
    )


@pytest.fixture
def payload(png_bytes):
    return ValidatedPayload(data=png_bytes, mime_type="image/webp")


def make_poller(store, backend, ingestor, bridge=None):
    return JobPoller(store, {BackendType.HORDE: backend}, ingestor, bridge=bridge, interval=0.01)


@pytest.mark.fast
class TestTick:
    @pytest.mark.asyncio
    async def test_progress_updates(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [queued(3)])
        poller = make_poller(store, backend, StubIngestor(asset))

        [updated] = await poller.tick()

        assert updated.status == JobStatus.GENERATING
        assert updated.progress == 70
        assert updated.queue_position == 3
        assert updated.metadata["waiting"] == 1
        assert updated.metadata["wait_time"] == 30
        assert store.get(job.id) == updated

    @pytest.mark.asyncio
    async def test_progress_monotonic_until_completion(self, settings, store, job, asset, payload):
        positions = [6, 9, 2, None, 14, 1, None, None, 4]
        backend = ScriptedHorde(settings, [queued(p) for p in positions] + [done_status()], payload)
        poller = make_poller(store, backend, StubIngestor(asset))

        seen = [job.progress]
        for _ in positions:
            [updated] = await poller.tick()
            assert updated.status == JobStatus.GENERATING
            seen.append(updated.progress)

        assert seen == sorted(seen)
        assert max(seen) <= 90

        [final] = await poller.tick()
        assert final.status == JobStatus.COMPLETED
        assert final.progress == 100

    @pytest.mark.asyncio
    async def test_faulted(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [HordeStatus(faulted=True)])
        poller = make_poller(store, backend, StubIngestor(asset))

        [failed] = await poller.tick()

        assert failed.status == JobStatus.FAILED
        assert failed.error == GENERATION_FAULTED
        assert await poller.tick() == []

    @pytest.mark.asyncio
    async def test_single_terminal_state(self, settings, store, job, asset, payload):
        backend = ScriptedHorde(settings, [HordeStatus(faulted=True), done_status()], payload)
        ingestor = StubIngestor(asset)
        poller = make_poller(store, backend, ingestor)

        await poller.tick()
        await poller.tick()

        assert store.get(job.id).status == JobStatus.FAILED
        assert backend.checks == 1
        assert ingestor.calls == []

    @pytest.mark.asyncio
    async def test_status_check_failure(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [BackendError("down", BackendType.HORDE, status_code=500)])
        poller = make_poller(store, backend, StubIngestor(asset))

        [failed] = await poller.tick()

        assert failed.status == JobStatus.FAILED
        assert failed.error == STATUS_CHECK_FAILED

    @pytest.mark.asyncio
    async def test_rate_limited_check_is_skipped(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [RateLimitError(BackendType.HORDE), queued(2)])
        poller = make_poller(store, backend, StubIngestor(asset))

        [skipped] = await poller.tick()
        assert skipped == job
        assert skipped.status == JobStatus.GENERATING

        [updated] = await poller.tick()
        assert updated.progress == 80

    @pytest.mark.asyncio
    async def test_quota_limited_check_is_skipped(self, settings, mock_client, sleeper, store, job, asset):
        checks = []

        def handler(request):
            checks.append(request)
            assert request.url.path.endswith("/v2/generate/status/horde-1")
            return httpx.Response(429, json={"message": "Daily quota for anonymous users reached"})

        backend = HordeBackend(settings, client=mock_client(handler), sleep=sleeper)
        poller = make_poller(store, backend, StubIngestor(asset))

        [skipped] = await poller.tick()

        assert skipped.status == JobStatus.GENERATING
        assert skipped.error is None
        assert len(checks) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_done_without_image(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [HordeStatus(done=True)])
        poller = make_poller(store, backend, StubIngestor(asset))

        [failed] = await poller.tick()

        assert failed.status == JobStatus.FAILED
        assert failed.error == NO_IMAGE_DATA

    @pytest.mark.asyncio
    async def test_completion_saves_private_record(self, settings, store, job, asset, payload, png_bytes):
        backend = ScriptedHorde(settings, [done_status()], payload)
        ingestor = StubIngestor(asset)
        bridge = RecordingBridge()
        poller = make_poller(store, backend, ingestor, bridge)

        [completed] = await poller.tick()

        assert completed.status == JobStatus.COMPLETED
        assert completed.result_asset == asset
        assert completed.backend_job_handle is None
        assert completed.metadata["seed"] == "42"
        assert completed.metadata["worker_name"] == "fox-worker"
        assert completed.metadata["saved_image_id"] == 1
        assert ingestor.calls == [(png_bytes, "image/webp")]

        [request] = bridge.requests
        assert request.visibility == Visibility.PRIVATE
        assert request.provider == BackendType.HORDE
        assert request.title == "AI Generated: a red fox in snow"
        assert request.caption == 'Generated with AI Horde (Free) using prompt: "a red fox in snow"'

    @pytest.mark.asyncio
    async def test_gallery_failure_still_completes(self, settings, store, job, asset, payload):
        backend = ScriptedHorde(settings, [done_status()], payload)
        poller = make_poller(store, backend, StubIngestor(asset), RecordingBridge(fail=True))

        [completed] = await poller.tick()

        assert completed.status == JobStatus.COMPLETED
        assert "saved_image_id" not in completed.metadata

    @pytest.mark.asyncio
    async def test_ingestion_failure_fails_job(self, settings, store, job, asset, payload):
        backend = ScriptedHorde(settings, [done_status()], payload)
        ingestor = StubIngestor(asset, error=IngestionError("Cloudinary error: 500"))
        poller = make_poller(store, backend, ingestor)

        [failed] = await poller.tick()

        assert failed.status == JobStatus.FAILED
        assert failed.error == "Failed to process generated image: Cloudinary error: 500"

    @pytest.mark.asyncio
    async def test_unexpected_processing_error_fails_job(self, settings, store, job, asset, payload):
        backend = ScriptedHorde(settings, [done_status()], payload)
        poller = make_poller(store, backend, StubIngestor(asset, error=ValueError("bad bytes")))

        [failed] = await poller.tick()

        assert failed.status == JobStatus.FAILED
        assert failed.error == "Failed to process generated image: bad bytes"

    @pytest.mark.asyncio
    async def test_invalid_cdn_response_fails_job_once(
        self, settings, mock_client, sleeper, store, job, payload, cdn_result
    ):
        uploads = []

        def handler(request):
            uploads.append(request)
            return httpx.Response(200, json=cdn_result(bytes=-1))

        backend = ScriptedHorde(settings, [done_status()], payload)
        ingestor = AssetIngestor(
            StorageConfig.from_settings(settings), client=mock_client(handler), sleep=sleeper
        )
        poller = make_poller(store, backend, ingestor)

        [failed] = await poller.tick()
        assert await poller.tick() == []
        assert await poller.tick() == []

        assert failed.status == JobStatus.FAILED
        assert failed.error == "Failed to process generated image: Invalid response from Cloudinary"
        assert store.get(job.id).status == JobStatus.FAILED
        assert len(uploads) == 1
        assert backend.checks == 1

    @pytest.mark.asyncio
    async def test_non_queued_backend_fails_job(self, settings, store, asset):
        job = store.add(
            GenerationJob.create(
                "a red fox", GenerationSettings(), backend=BackendType.GEMINI, backend_job_handle="x"
            )
        )
        poller = make_poller(store, ScriptedHorde(settings, [queued(1)]), StubIngestor(asset))

        [failed] = await poller.tick()

        assert failed.id == job.id
        assert failed.error == STATUS_CHECK_FAILED

    @pytest.mark.asyncio
    async def test_one_check_in_flight_per_job(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [queued(2)])
        backend.gate = asyncio.Event()
        poller = make_poller(store, backend, StubIngestor(asset))

        first = asyncio.create_task(poller.tick())
        await asyncio.sleep(0)
        assert await poller.tick() == []

        backend.gate.set()
        [updated] = await first
        assert backend.checks == 1
        assert updated.progress == 80

    @pytest.mark.asyncio
    async def test_forgotten_job_not_resurrected(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [queued(2)])
        backend.gate = asyncio.Event()
        poller = make_poller(store, backend, StubIngestor(asset))

        first = asyncio.create_task(poller.tick())
        await asyncio.sleep(0)
        assert poller.forget(job.id) == job

        backend.gate.set()
        await first
        assert store.get(job.id) is None


@pytest.mark.fast
class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self, settings, store, job, asset):
        backend = ScriptedHorde(settings, [queued(5)])
        poller = make_poller(store, backend, StubIngestor(asset))

        await poller.start()
        await poller.start()
        assert poller.running
        await asyncio.sleep(0.05)
        await poller.stop()

        assert not poller.running
        assert backend.checks >= 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, settings, store, asset):
        poller = make_poller(store, ScriptedHorde(settings, [queued(1)]), StubIngestor(asset))
        await poller.stop()
        assert not poller.running


@pytest.mark.e2e
class TestFoxScenario:
    """Submit to AI Horde, poll to completion, ingest and auto-save privately."""

    @pytest.mark.asyncio
    async def test_red_fox_in_snow(self, settings, mock_client, sleeper, png_bytes, cdn_result):
        statuses = iter(
            [
                {"done": False, "waiting": 1, "processing": 0, "queue_position": 4, "wait_time": 60},
                {"done": False, "waiting": 0, "processing": 1, "queue_position": 2, "wait_time": 20},
                {
                    "done": True,
                    "finished": 1,
                    "kudos": 12,
                    "generations": [
                        {
                            "img": "https://r2.horde.test/fox.webp",
                            "model": "stable_diffusion",
                            "seed": "1312",
                            "worker_name": "snowy-worker",
                        }
                    ],
                },
            ]
        )
        uploads = []

        def handler(request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            if url.endswith("/v2/generate/async"):
                body = json.loads(request.content)
                assert body["prompt"] == "a red fox in snow"
                return httpx.Response(202, json={"id": "fox-job", "kudos": 12, "queue_position": 4})
            if "/v2/generate/status/fox-job" in url:
                return httpx.Response(200, json=next(statuses))
            if request.url.host == "r2.horde.test":
                return httpx.Response(200, content=png_bytes, headers={"content-type": "image/webp"})
            if url == "https://api.cloudinary.com/v1_1/demo/image/upload":
                uploads.append(request.content)
                return httpx.Response(200, json=cdn_result("pixelvault/ai-generated-fox", format="webp"))
            return httpx.Response(404)

        client = mock_client(handler)
        store = JobStore()
        horde = HordeBackend(settings, client=client, sleep=sleeper)
        ingestor = AssetIngestor(StorageConfig.from_settings(settings), client=client, sleep=sleeper)
        bridge = RecordingBridge()
        orchestrator = GenerationOrchestrator(settings, {BackendType.HORDE: horde}, ingestor, store)
        poller = JobPoller(store, {BackendType.HORDE: horde}, ingestor, bridge=bridge)

        result = await orchestrator.orchestrate("a red fox in snow", GenerationSettings(provider="horde"))
        assert result.kind == "pending"
        job_id = result.job.id
        assert store.get(job_id).progress == 20

        progress = []
        for _ in range(3):
            await poller.tick()
            progress.append(store.get(job_id).progress)

        job = store.get(job_id)
        assert progress == [60, 80, 100]
        assert job.status == JobStatus.COMPLETED
        assert job.result_asset.public_id == "pixelvault/ai-generated-fox"
        assert job.result_asset.secure_url.startswith("https://res.cloudinary.com/")
        assert job.metadata["saved_image_id"] == 1
        assert job.metadata["seed"] == "1312"
        assert len(uploads) == 1
        assert b"upload_preset" in uploads[0]

        [saved] = bridge.requests
        assert saved.visibility == Visibility.PRIVATE
        assert saved.prompt_text == "a red fox in snow"
        assert saved.model == "stable_diffusion"

        # Terminal: nothing left to poll
        assert await poller.tick() == []
        assert sleeper.delays == []
