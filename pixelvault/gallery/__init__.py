"""Gallery persistence for generated images."""

from pixelvault.gallery.bridge import (
    GalleryPersistenceBridge,
    SavedRecord,
    SaveRequest,
    SqlGalleryBridge,
    build_save_request,
)

__all__ = [
    "GalleryPersistenceBridge",
    "SaveRequest",
    "SavedRecord",
    "SqlGalleryBridge",
    "build_save_request",
]
