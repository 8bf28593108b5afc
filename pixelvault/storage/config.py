"""CDN configuration model."""

from __future__ import annotations

from pydantic import BaseModel, Field

from pixelvault.config import Settings


class StorageConfig(BaseModel):
    """Configuration for CDN ingestion.

    Attributes:
        cloud_name: CDN cloud (account) name.
        upload_preset: Unsigned upload preset.
        folder: Folder every generated asset is uploaded into.
        api_base_url: Upload API root.
        delivery_prefix: Prefix every returned secure_url must carry.
        timeout: Upload request timeout in seconds.
    """

    cloud_name: str | None = Field(default=None, description="CDN cloud name")
    upload_preset: str | None = Field(default=None, description="Unsigned upload preset")
    folder: str = Field(default="pixelvault", description="Upload folder")
    tags: list[str] = Field(default_factory=lambda: ["pixelvault", "ai-generated"])
    api_base_url: str = Field(default="https://api.cloudinary.com/v1_1")
    delivery_prefix: str = Field(default="https://res.cloudinary.com/")
    timeout: float = Field(default=30.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageConfig":
        return cls(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            upload_preset=settings.CLOUDINARY_UPLOAD_PRESET,
            folder=settings.CLOUDINARY_FOLDER,
            api_base_url=settings.CLOUDINARY_API_BASE_URL,
            delivery_prefix=settings.CLOUDINARY_DELIVERY_PREFIX,
        )

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.upload_preset)

    @property
    def upload_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/{self.cloud_name}/image/upload"
