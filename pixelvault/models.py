"""SQLAlchemy models for PixelVault.

Only the generated-image catalog record lives here; the rest of the gallery
schema (albums, tags, comments) belongs to the gallery service.

Examples:
    >>> from pixelvault.models import GeneratedImage, Visibility
    >>> image = GeneratedImage(
    ...     title="AI Generated: a red fox in snow",
    ...     prompt_text="a red fox in snow",
    ...     visibility=Visibility.PRIVATE,
    ... )
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Visibility(str, Enum):
    """Who can see a gallery image.

    Generated images default to PRIVATE until the owner publishes them.
    """

    PUBLIC = "public"
    UNLISTED = "unlisted"
    PRIVATE = "private"


class GeneratedImage(Base):
    """Catalog record for an AI-generated image stored on the CDN.

    Attributes:
        id: Integer primary key
        uuid: Public identifier
        title: Display title
        caption: Display caption
        alt_text: Accessibility text
        slug: URL-safe slug derived from the prompt
        prompt_text: Prompt the image was generated from
        provider: Backend that produced the image
        settings_json: Generation settings
        public_id: CDN public id
        canonical_url: CDN delivery URL
        thumbnail_url: CDN thumbnail URL
        original_filename: Filename recorded for downloads
        mime_type: Image MIME type
        width: Pixel width
        height: Pixel height
        byte_size: Stored size in bytes
        visibility: Who can see the image
        created_at: Creation timestamp
    """

    __tablename__ = "generated_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        index=True,
        default=lambda: str(uuid.uuid4()),
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    alt_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    slug: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    settings_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    public_id: Mapped[str] = mapped_column(String(255), nullable=False)
    canonical_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    byte_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    visibility: Mapped[Visibility] = mapped_column(
        SQLEnum(Visibility),
        default=Visibility.PRIVATE,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<GeneratedImage(id={self.id}, uuid={self.uuid}, visibility={self.visibility})>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary for API responses."""
        return {
            "id": self.id,
            "uuid": self.uuid,
            "title": self.title,
            "caption": self.caption,
            "alt_text": self.alt_text,
            "prompt_text": self.prompt_text,
            "provider": self.provider,
            "public_id": self.public_id,
            "canonical_url": self.canonical_url,
            "thumbnail_url": self.thumbnail_url,
            "original_filename": self.original_filename,
            "mime_type": self.mime_type,
            "width": self.width,
            "height": self.height,
            "file_size": self.byte_size,
            "is_ai_generated": self.is_ai_generated,
            "visibility": self.visibility.value if self.visibility else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
