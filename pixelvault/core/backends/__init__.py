"""Image generation backend adapters.

Examples:
    >>> from pixelvault.core.backends import build_backends
    >>> backends = build_backends(settings, client)
    >>> backends[BackendType.HORDE]
    <pixelvault.core.backends.horde.HordeBackend object at ...>
"""

import httpx

from pixelvault.config import BackendType, Settings
from pixelvault.core.backends.base import (
    BackendResult,
    GenerationBackend,
    PendingResult,
    QueuedGenerationBackend,
    ReadyResult,
)
from pixelvault.core.backends.gemini import GeminiBackend
from pixelvault.core.backends.horde import HordeBackend, HordeStatus
from pixelvault.core.backends.huggingface import HuggingFaceBackend
from pixelvault.core.backends.kobold import KoboldBackend
from pixelvault.core.backends.openai import OpenAIBackend

BACKEND_CLASSES: dict[BackendType, type[GenerationBackend]] = {
    BackendType.OPENAI: OpenAIBackend,
    BackendType.GEMINI: GeminiBackend,
    BackendType.HUGGINGFACE: HuggingFaceBackend,
    BackendType.HORDE: HordeBackend,
    BackendType.KOBOLD: KoboldBackend,
}


def build_backend(
    backend_type: BackendType,
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> GenerationBackend:
    """Instantiate one backend adapter."""
    return BACKEND_CLASSES[backend_type](settings, client=client)


def build_backends(
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> dict[BackendType, GenerationBackend]:
    """Instantiate every adapter, sharing one HTTP client."""
    return {backend_type: build_backend(backend_type, settings, client) for backend_type in BackendType}


__all__ = [
    "BACKEND_CLASSES",
    "BackendResult",
    "GeminiBackend",
    "GenerationBackend",
    "HordeBackend",
    "HordeStatus",
    "HuggingFaceBackend",
    "KoboldBackend",
    "OpenAIBackend",
    "PendingResult",
    "QueuedGenerationBackend",
    "ReadyResult",
    "build_backend",
    "build_backends",
]
