"""Tests for pixelvault.storage.ingestor module.

Covers:
    - successful upload and response validation
    - preconditions checked before any request
    - retries with a fresh public id per attempt
    - untrusted CDN responses rejected
    - delivery URL building
"""

import re

import httpx
import pytest

from pixelvault.core.errors import IngestionError
from pixelvault.core.payload import MAX_IMAGE_BYTES
from pixelvault.storage import THUMBNAIL_TRANSFORMATION, AssetIngestor, StorageConfig

PUBLIC_ID_FIELD = re.compile(rb'name="public_id"\r\n\r\n([^\r]+)')


@pytest.fixture
def config():
    return StorageConfig(cloud_name="demo", upload_preset="unsigned")


def public_id_of(request: httpx.Request) -> str:
    return PUBLIC_ID_FIELD.search(request.content).group(1).decode()


@pytest.mark.fast
class TestStorageConfig:
    def test_from_settings(self, settings):
        config = StorageConfig.from_settings(settings)
        assert config.configured
        assert config.folder == "pixelvault"
        assert config.upload_url == "https://api.cloudinary.com/v1_1/demo/image/upload"

    def test_not_configured(self):
        assert not StorageConfig(cloud_name="demo").configured

    @pytest.mark.asyncio
    async def test_close_only_releases_own_client(self, config, mock_client):
        shared = mock_client(lambda request: httpx.Response(200))
        await AssetIngestor(config, client=shared).close()
        assert not shared.is_closed

        standalone = AssetIngestor(config)
        lazy = standalone.client
        await standalone.close()
        assert lazy.is_closed


@pytest.mark.fast
class TestIngest:
    @pytest.mark.asyncio
    async def test_success(self, config, mock_client, sleeper, png_bytes, cdn_result):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=cdn_result(public_id_of(request)))

        ingestor = AssetIngestor(config, client=mock_client(handler), sleep=sleeper)
        asset = await ingestor.ingest(png_bytes, "image/png")

        [request] = requests
        assert str(request.url) == "https://api.cloudinary.com/v1_1/demo/image/upload"
        assert b'name="upload_preset"\r\n\r\nunsigned' in request.content
        assert b'name="folder"\r\n\r\npixelvault' in request.content
        assert b'name="tags"\r\n\r\npixelvault,ai-generated' in request.content
        assert b'filename="generated-image.png"' in request.content
        assert public_id_of(request).startswith("pixelvault/ai-generated-")
        assert asset.public_id == public_id_of(request)
        assert asset.secure_url.startswith("https://res.cloudinary.com/")
        assert asset.byte_size == 208
        assert asset.width == 512

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data,mime_type,message",
        [
            (b"", "image/png", "Invalid image blob"),
            (b"\x00" * 200, "text/plain", "Invalid file type"),
            (b"\x00" * (MAX_IMAGE_BYTES + 1), "image/png", "Image too large"),
        ],
    )
    async def test_preconditions(self, config, mock_client, data, mime_type, message):
        requests = []
        ingestor = AssetIngestor(config, client=mock_client(lambda r: requests.append(r)))
        with pytest.raises(IngestionError, match=message):
            await ingestor.ingest(data, mime_type)
        assert requests == []

    @pytest.mark.asyncio
    async def test_octet_stream_accepted(self, config, mock_client, sleeper, png_bytes, cdn_result):
        ingestor = AssetIngestor(
            config,
            client=mock_client(lambda r: httpx.Response(200, json=cdn_result())),
            sleep=sleeper,
        )
        asset = await ingestor.ingest(png_bytes, "application/octet-stream")
        assert asset.public_id == "pixelvault/ai-generated-abc123"

    @pytest.mark.asyncio
    async def test_missing_configuration(self, png_bytes):
        ingestor = AssetIngestor(StorageConfig(cloud_name="demo"))
        with pytest.raises(IngestionError, match="Cloudinary configuration missing"):
            await ingestor.ingest(png_bytes, "image/png")

    @pytest.mark.asyncio
    async def test_retry_uses_fresh_public_id(self, config, mock_client, sleeper, png_bytes, cdn_result):
        requests = []

        def handler(request):
            requests.append(request)
            if len(requests) < 3:
                return httpx.Response(500, text="Internal Server Error")
            return httpx.Response(200, json=cdn_result(public_id_of(request)))

        ingestor = AssetIngestor(config, client=mock_client(handler), sleep=sleeper)
        asset = await ingestor.ingest(png_bytes, "image/png")

        ids = [public_id_of(r) for r in requests]
        assert len(ids) == 3
        assert len(set(ids)) == 3
        assert asset.public_id == ids[-1]
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, config, mock_client, sleeper, png_bytes):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(400, json={"error": {"message": "Upload preset not found"}})

        ingestor = AssetIngestor(config, client=mock_client(handler), sleep=sleeper)
        with pytest.raises(IngestionError, match="Cloudinary error: Upload preset not found") as exc_info:
            await ingestor.ingest(png_bytes, "image/png")
        assert exc_info.value.status_code == 400
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self, config, mock_client, sleeper, png_bytes):
        def handler(request):
            raise httpx.ConnectError("connection reset", request=request)

        ingestor = AssetIngestor(config, client=mock_client(handler), sleep=sleeper)
        with pytest.raises(IngestionError, match="connection reset"):
            await ingestor.ingest(png_bytes, "image/png")
        assert len(sleeper.delays) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,message",
        [
            ({"public_id": "x", "resource_type": "image"}, "missing required fields: secure_url"),
            (
                {"public_id": "x", "secure_url": "https://evil.test/x.png", "resource_type": "image"},
                "Invalid secure_url format",
            ),
            ([], "Invalid response from Cloudinary"),
        ],
    )
    async def test_untrusted_responses(self, config, mock_client, sleeper, png_bytes, body, message):
        ingestor = AssetIngestor(
            config,
            client=mock_client(lambda r: httpx.Response(200, json=body)),
            sleep=sleeper,
        )
        with pytest.raises(IngestionError, match=message):
            await ingestor.ingest(png_bytes, "image/png")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [{"bytes": -1}, {"width": "wide"}, {"public_id": 42}])
    async def test_invalid_field_values_not_retried(
        self, config, mock_client, sleeper, png_bytes, cdn_result, overrides
    ):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=cdn_result(**overrides))

        ingestor = AssetIngestor(config, client=mock_client(handler), sleep=sleeper)
        with pytest.raises(IngestionError, match="Invalid response from Cloudinary") as exc_info:
            await ingestor.ingest(png_bytes, "image/png")
        assert not exc_info.value.retryable
        assert len(requests) == 1
        assert sleeper.delays == []


@pytest.mark.fast
class TestBuildDeliveryUrl:
    def test_thumbnail(self, config):
        url = AssetIngestor(config).build_delivery_url("pixelvault/ai-generated-1", THUMBNAIL_TRANSFORMATION)
        assert url == (
            "https://res.cloudinary.com/demo/image/upload/"
            "w_400,h_400,c_fill,q_auto,f_auto/pixelvault/ai-generated-1"
        )

    def test_bare_id_gets_folder(self, config):
        url = AssetIngestor(config).build_delivery_url("ai-generated-1")
        assert url == "https://res.cloudinary.com/demo/image/upload/pixelvault/ai-generated-1"

    def test_empty_id(self, config):
        assert AssetIngestor(config).build_delivery_url("") is None
