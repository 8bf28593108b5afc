"""CDN ingestion of generated images.

Uploads validated image bytes to a Cloudinary-compatible unsigned upload
endpoint and checks the response before anything downstream trusts it. Each
upload attempt uses a fresh public id, so a retried upload never overwrites
an earlier asset.

Examples:
    >>> from pixelvault.storage import AssetIngestor, StorageConfig
    >>> ingestor = AssetIngestor(StorageConfig(cloud_name="demo", upload_preset="unsigned"))
    >>> asset = await ingestor.ingest(png_bytes, "image/png")
    >>> asset.secure_url
    'https://res.cloudinary.com/demo/image/upload/v1/pixelvault/ai-generated-...'

Tests:
    - tests/unit/test_storage/test_ingestor.py
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from pixelvault.core.errors import IngestionError
from pixelvault.core.payload import MAX_IMAGE_BYTES
from pixelvault.core.retry import DEFAULT_RETRY, RetryPolicy, SleepFunc, execute_with_retry
from pixelvault.schemas.assets import Asset
from pixelvault.storage.config import StorageConfig
from pixelvault.storage.naming import generate_public_id

logger = logging.getLogger(__name__)

UPLOAD_FILENAME = "generated-image.png"
REQUIRED_FIELDS = ("secure_url", "public_id", "resource_type")

# Transformation used for gallery thumbnails
THUMBNAIL_TRANSFORMATION = "w_400,h_400,c_fill,q_auto,f_auto"


class AssetIngestor:
    """Uploads image bytes to the CDN and returns a trusted Asset.

    Attributes:
        config: CDN configuration
        retry_policy: Retry policy for the upload call
    """

    def __init__(
        self,
        config: StorageConfig,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.config = config
        self.retry_policy = retry_policy
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _check_preconditions(self, data: bytes, mime_type: str) -> None:
        if not data:
            raise IngestionError("Invalid image blob: empty or null")
        if not (mime_type.startswith("image/") or mime_type == "application/octet-stream"):
            raise IngestionError(f"Invalid file type for image upload: {mime_type}")
        if len(data) > MAX_IMAGE_BYTES:
            raise IngestionError("Image too large for upload (max 10MB)")
        if not self.config.configured:
            raise IngestionError("Cloudinary configuration missing: cloud_name or upload_preset")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"Cloudinary error: {response.status_code} {response.text}"
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return f"Cloudinary error: {error['message']}"
        return f"Cloudinary error: {response.status_code} {response.text}"

    def _validate_response(self, result: object) -> Asset:
        if not isinstance(result, dict):
            raise IngestionError("Invalid response from Cloudinary")

        missing = [name for name in REQUIRED_FIELDS if not result.get(name)]
        if missing:
            raise IngestionError(
                f"Cloudinary response missing required fields: {', '.join(missing)}"
            )
        if not str(result["secure_url"]).startswith(self.config.delivery_prefix):
            raise IngestionError("Invalid secure_url format received from Cloudinary")

        try:
            return Asset(
                public_id=result["public_id"],
                secure_url=result["secure_url"],
                width=result.get("width"),
                height=result.get("height"),
                byte_size=result.get("bytes"),
                format=result.get("format"),
                resource_type=result["resource_type"],
            )
        except ValidationError as e:
            logger.error(f"Rejected CDN response with {e.error_count()} invalid field(s)")
            raise IngestionError("Invalid response from Cloudinary") from e

    async def _upload_once(self, data: bytes, mime_type: str) -> Asset:
        public_id = generate_public_id(self.config.folder)
        form = {
            "upload_preset": self.config.upload_preset,
            "public_id": public_id,
            "folder": self.config.folder,
            "tags": ",".join(self.config.tags),
            "resource_type": "image",
        }
        logger.debug(f"Uploading {len(data)} bytes to CDN as {public_id}")

        try:
            response = await self.client.post(
                self.config.upload_url,
                data=form,
                files={"file": (UPLOAD_FILENAME, data, mime_type)},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise IngestionError(f"Cloudinary error: {str(e) or e.__class__.__name__}", retryable=True) from e

        if response.is_error:
            message = self._error_message(response)
            logger.error(f"CDN upload failed ({response.status_code}): {message}")
            raise IngestionError(
                message,
                status_code=response.status_code,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise IngestionError("Invalid response from Cloudinary") from e

        return self._validate_response(result)

    async def ingest(self, data: bytes, mime_type: str) -> Asset:
        """Upload image bytes and return the stored asset.

        Args:
            data: Image bytes (at most 10 MiB).
            mime_type: image/* or application/octet-stream.

        Returns:
            Asset describing the stored image.

        Raises:
            IngestionError: If preconditions fail, the upload fails after
                retries, or the CDN response cannot be trusted.
        """
        self._check_preconditions(data, mime_type)
        asset = await execute_with_retry(
            lambda: self._upload_once(data, mime_type),
            self.retry_policy,
            label="cdn:upload",
            sleep=self._sleep,
        )
        logger.info(
            f"CDN upload succeeded: {asset.public_id} "
            f"({asset.width}x{asset.height}, {asset.byte_size} bytes)"
        )
        return asset

    def build_delivery_url(self, public_id: str, transformation: str = "") -> str | None:
        """Build a delivery URL for an asset, optionally transformed.

        Bare public ids are assumed to live in the configured folder.

        Examples:
            >>> ingestor.build_delivery_url("pixelvault/ai-generated-1", THUMBNAIL_TRANSFORMATION)
            'https://res.cloudinary.com/demo/image/upload/w_400,h_400,c_fill,q_auto,f_auto/pixelvault/ai-generated-1'
        """
        if not public_id:
            return None
        folder_prefix = f"{self.config.folder}/"
        if not public_id.startswith(folder_prefix) and "." not in public_id:
            public_id = f"{folder_prefix}{public_id}"
        base_url = f"{self.config.delivery_prefix.rstrip('/')}/{self.config.cloud_name}/image/upload"
        return f"{base_url}/{transformation}/{public_id}" if transformation else f"{base_url}/{public_id}"
