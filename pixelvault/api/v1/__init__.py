"""API v1 module.

Contains all v1 API routes.
"""

from fastapi import APIRouter

from pixelvault.api.v1.generation import router as generation_router

router = APIRouter(prefix="/api/v1")
router.include_router(generation_router)

__all__ = ["router"]
