"""Gallery persistence bridge.

Hands finished assets to the gallery catalog. The generation pipeline only
depends on the GalleryPersistenceBridge protocol; SqlGalleryBridge is the
SQLAlchemy implementation used by the application.

Examples:
    >>> request = build_save_request("a red fox in snow", settings, BackendType.HORDE, asset)
    >>> request.title
    'AI Generated: a red fox in snow'
    >>> record = await bridge.save(request)
    >>> record.canonical_url
    'https://res.cloudinary.com/demo/image/upload/...'

Tests:
    - tests/unit/test_gallery.py
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelvault.config import BACKEND_LABELS, BackendType
from pixelvault.models import GeneratedImage, Visibility
from pixelvault.schemas.assets import Asset
from pixelvault.schemas.generation import GenerationSettings
from pixelvault.storage.ingestor import THUMBNAIL_TRANSFORMATION, AssetIngestor
from pixelvault.storage.naming import generate_original_filename, sanitize_slug

logger = logging.getLogger(__name__)

TITLE_PROMPT_CHARS = 50


class SaveRequest(BaseModel):
    """Everything the catalog needs to record a generated image."""

    model_config = ConfigDict(frozen=True)

    prompt_text: str
    settings: dict[str, Any] = Field(default_factory=dict)
    provider: BackendType
    model: str | None = None
    title: str
    caption: str
    alt_text: str
    visibility: Visibility = Visibility.PRIVATE
    asset: Asset


class SavedRecord(BaseModel):
    """Identifiers of a stored catalog record."""

    model_config = ConfigDict(frozen=True)

    id: int
    uuid: str
    canonical_url: str
    thumbnail_url: str | None = None
    record: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class GalleryPersistenceBridge(Protocol):
    """Anything that can store a generated image in the gallery."""

    async def save(self, request: SaveRequest) -> SavedRecord: ...


def build_save_request(
    prompt: str,
    settings: GenerationSettings | dict[str, Any] | None,
    provider: BackendType,
    asset: Asset,
    *,
    model: str | None = None,
    title: str | None = None,
    caption: str | None = None,
    alt_text: str | None = None,
    visibility: Visibility = Visibility.PRIVATE,
) -> SaveRequest:
    """Build a SaveRequest, filling in the default title, caption and alt text.

    Args:
        prompt: Prompt the image was generated from.
        settings: Generation settings, as a model or a plain dict.
        provider: Backend that produced the image.
        asset: Ingested CDN asset.
        model: Model name used for the caption when given.
        title: Overrides "AI Generated: {prompt[:50]}".
        caption: Overrides 'Generated with {label} using prompt: "{prompt}"'.
        alt_text: Overrides the prompt.
        visibility: Defaults to private.

    Returns:
        SaveRequest ready for a bridge.
    """
    if isinstance(settings, GenerationSettings):
        settings = settings.model_dump(mode="json", by_alias=True, exclude_none=True)

    label = BACKEND_LABELS[provider] if provider == BackendType.HORDE or not model else model
    return SaveRequest(
        prompt_text=prompt,
        settings=settings or {},
        provider=provider,
        model=model,
        title=title or f"AI Generated: {prompt[:TITLE_PROMPT_CHARS]}",
        caption=caption or f'Generated with {label} using prompt: "{prompt}"',
        alt_text=alt_text or prompt,
        visibility=visibility,
        asset=asset,
    )


class SqlGalleryBridge:
    """Stores generated images as GeneratedImage rows.

    Attributes:
        session_factory: Async session factory
        ingestor: Used to build thumbnail delivery URLs
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ingestor: AssetIngestor,
    ) -> None:
        self.session_factory = session_factory
        self.ingestor = ingestor

    async def save(self, request: SaveRequest) -> SavedRecord:
        """Persist a generated image and return its identifiers."""
        asset = request.asset
        row = GeneratedImage(
            title=request.title,
            caption=request.caption,
            alt_text=request.alt_text,
            slug=sanitize_slug(request.prompt_text),
            prompt_text=request.prompt_text,
            provider=request.provider.value,
            settings_json=request.settings,
            public_id=asset.public_id,
            canonical_url=asset.secure_url,
            thumbnail_url=self.ingestor.build_delivery_url(asset.public_id, THUMBNAIL_TRANSFORMATION),
            original_filename=generate_original_filename(request.prompt_text, asset.format),
            mime_type=asset.mime_type,
            width=asset.width,
            height=asset.height,
            byte_size=asset.byte_size,
            visibility=request.visibility,
        )

        async with self.session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
            await session.refresh(row)

        logger.info(f"Saved generated image {row.uuid} ({request.visibility.value})")
        return SavedRecord(
            id=row.id,
            uuid=row.uuid,
            canonical_url=row.canonical_url,
            thumbnail_url=row.thumbnail_url,
            record=row.to_dict(),
        )
