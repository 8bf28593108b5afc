"""Image payload and stored asset schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ValidatedPayload(BaseModel):
    """Decoded image bytes that passed size and format checks.

    Attributes:
        data: Raw image bytes (100 B to 10 MiB)
        mime_type: Declared image MIME type, e.g. "image/png"
    """

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class Asset(BaseModel):
    """Durable result of a CDN ingestion.

    Attributes:
        public_id: CDN public identifier
        secure_url: HTTPS delivery URL
        width: Pixel width reported by the CDN
        height: Pixel height reported by the CDN
        byte_size: Stored size in bytes
        format: Stored format (png, jpg, webp, ...)
        resource_type: CDN resource type, normally "image"
    """

    model_config = ConfigDict(frozen=True)

    public_id: str
    secure_url: str
    width: int | None = None
    height: int | None = None
    byte_size: int | None = Field(default=None, ge=0)
    format: str | None = None
    resource_type: str = "image"

    @property
    def mime_type(self) -> str:
        return f"image/{self.format}" if self.format else "image/jpeg"
