"""FastAPI application for PixelVault.

This module provides the FastAPI application with health endpoints, the AI
generation routes, pipeline error handlers and lifecycle management (HTTP
client, database and job poller).

Run with:
    uvicorn pixelvault.main:app --reload

Examples:
    >>> # Health check
    >>> curl http://localhost:8000/health

    >>> # Generate an image
    >>> curl -X POST http://localhost:8000/api/v1/ai/generate-image \\
    ...     -d '{"prompt": "a red fox in snow"}'

Tests:
    - tests/unit/test_main.py
    - tests/unit/test_api/test_generation.py
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pixelvault import __version__
from pixelvault.api.v1 import router as v1_router
from pixelvault.config import BackendType, Settings, get_settings
from pixelvault.core.backends.base import USER_AGENT
from pixelvault.core.errors import (
    BackendError,
    IngestionError,
    InputValidationError,
    LadderExhaustedError,
    PayloadValidationError,
    PixelVaultError,
)
from pixelvault.database import check_db_connection, close_db, get_session_factory, init_db
from pixelvault.services import Services, build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Response models
class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: bool
    cdn: bool
    backends: dict[str, bool]
    poller: bool


def error_response(exc: PixelVaultError) -> tuple[int, dict[str, Any]]:
    """Map a pipeline error to an HTTP status and JSON body.

    Input and payload problems are the caller's (400). A backend that
    stopped the ladder keeps its own 4xx status. Ladder exhaustion and CDN
    failures are upstream failures (502).
    """
    if isinstance(exc, LadderExhaustedError):
        return status.HTTP_502_BAD_GATEWAY, {
            "error": "All AI providers failed",
            "detail": str(exc),
            "providers_attempted": [b.value for b in exc.attempted],
        }
    if isinstance(exc, (InputValidationError, PayloadValidationError)):
        return status.HTTP_400_BAD_REQUEST, {"error": str(exc), "detail": None}
    if isinstance(exc, IngestionError):
        return status.HTTP_502_BAD_GATEWAY, {
            "error": "Failed to save generated image",
            "detail": str(exc),
        }
    if isinstance(exc, BackendError):
        code = exc.status_code if exc.aborts_ladder and exc.status_code else status.HTTP_502_BAD_GATEWAY
        return code, {"error": exc.message, "detail": str(exc)}
    return status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": str(exc), "detail": None}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown tasks:
    - Initialize database and pipeline services on startup
    - Start the job poller
    - Stop the poller and close connections on shutdown
    """
    settings: Settings = app.state.settings
    logger.info(f"Starting PixelVault v{__version__}")

    client: httpx.AsyncClient | None = None
    if getattr(app.state, "services", None) is None:
        try:
            await init_db()
            logger.info("Database initialized")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            # Continue anyway - might be using external DB

        client = httpx.AsyncClient(headers={"User-Agent": USER_AGENT})
        app.state.services = build_services(settings, client, get_session_factory())

    services: Services = app.state.services
    if settings.POLLER_ENABLED:
        await services.poller.start()

    yield

    logger.info("Shutting down PixelVault")
    await services.poller.stop()
    if client is not None:
        await client.aclose()
        await close_db()


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings (defaults to get_settings()).
        services: Prebuilt pipeline services; built during startup when None.

    Returns:
        Configured FastAPI app.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="PixelVault",
        description="AI image generation orchestrator for the PixelVault gallery",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.settings = settings
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else ["https://pixelvault.app"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router)

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc: HTTPException):
        """Handle HTTP exceptions with consistent response format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "detail": None},
        )

    @app.exception_handler(PixelVaultError)
    async def pipeline_exception_handler(request, exc: PixelVaultError):
        """Handle pipeline errors raised by the generation routes."""
        status_code, content = error_response(exc)
        logger.warning(f"{request.url.path} failed with {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception(f"Unexpected error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "detail": str(exc) if settings.DEBUG else None},
        )

    # Health endpoints
    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Check application health.

        Returns status of:
        - Database connection
        - CDN configuration
        - Generation backends (configured or not)
        - Job poller
        """
        db_healthy = await check_db_connection()
        current = app.state.services

        return HealthResponse(
            status="healthy" if db_healthy else "degraded",
            version=__version__,
            database=db_healthy,
            cdn=settings.cdn_configured,
            backends={b.value: settings.has_backend(b) for b in BackendType},
            poller=bool(current and current.poller.running),
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with basic info."""
        return {
            "name": "PixelVault",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


# Entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pixelvault.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
    )
