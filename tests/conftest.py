"""
Pytest configuration and fixtures for PixelVault tests.

No test talks to a real backend or CDN: every outbound call goes through an
httpx.MockTransport handler, and retry sleeps are recorded instead of slept.
"""
import base64
from typing import Any, Callable

import httpx
import pytest

from pixelvault.config import Settings
from pixelvault.schemas.assets import Asset

# PNG magic; png_bytes pads it past the 100-byte validator floor
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ============================================
# Test Fixtures
# ============================================

@pytest.fixture
def settings() -> Settings:
    """Settings with every backend and the CDN configured, no .env file."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        OPENAI_API_KEY="sk-test",
        GEMINI_API_KEY="gemini-test-key",
        HUGGING_FACE_API_KEY="hf-test-key",
        AI_HORDE_API_KEY="horde-test-key",
        KOBOLD_API_URL="http://kobold.local:5001",
        CLOUDINARY_CLOUD_NAME="demo",
        CLOUDINARY_UPLOAD_PRESET="unsigned",
        POLLER_ENABLED=False,
        DEBUG=True,
    )


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_SIGNATURE + b"\x00" * 200


@pytest.fixture
def png_b64(png_bytes: bytes) -> str:
    return base64.b64encode(png_bytes).decode()


@pytest.fixture
def png_data_url(png_b64: str) -> str:
    return f"data:image/png;base64,{png_b64}"


@pytest.fixture
def cdn_result() -> Callable[..., dict[str, Any]]:
    """Factory for a successful CDN upload response body."""

    def _make(public_id: str = "pixelvault/ai-generated-abc123", **overrides: Any) -> dict[str, Any]:
        body = {
            "public_id": public_id,
            "secure_url": f"https://res.cloudinary.com/demo/image/upload/v1/{public_id}.png",
            "resource_type": "image",
            "width": 512,
            "height": 512,
            "bytes": 208,
            "format": "png",
        }
        body.update(overrides)
        return body

    return _make


@pytest.fixture
def asset() -> Asset:
    return Asset(
        public_id="pixelvault/ai-generated-abc123",
        secure_url="https://res.cloudinary.com/demo/image/upload/v1/pixelvault/ai-generated-abc123.png",
        width=512,
        height=512,
        byte_size=208,
        format="png",
    )


@pytest.fixture
async def mock_client():
    """Factory building an AsyncClient whose requests go to a handler.

    Clients are closed after the test.
    """
    clients: list[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


# ============================================
# Pytest Configuration
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "fast: Fast unit tests (no external API calls)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end pipeline tests over mocked transports"
    )
