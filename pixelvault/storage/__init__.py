"""CDN storage package for PixelVault.

Provides ingestion of generated images into the CDN, plus public id and
filename generation.

Examples:
    >>> from pixelvault.storage import AssetIngestor, StorageConfig
    >>> ingestor = AssetIngestor(StorageConfig.from_settings(settings))
    >>> asset = await ingestor.ingest(data, "image/png")
"""

from pixelvault.storage.config import StorageConfig
from pixelvault.storage.ingestor import THUMBNAIL_TRANSFORMATION, AssetIngestor
from pixelvault.storage.naming import generate_original_filename, generate_public_id, sanitize_slug

__all__ = [
    "AssetIngestor",
    "StorageConfig",
    "THUMBNAIL_TRANSFORMATION",
    "generate_original_filename",
    "generate_public_id",
    "sanitize_slug",
]
