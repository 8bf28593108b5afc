"""API module for PixelVault.

Contains versioned API routers.
"""

from pixelvault.api.v1 import router as v1_router

__all__ = ["v1_router"]
