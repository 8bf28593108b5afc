"""Core generation pipeline: retry, payload validation, backends, orchestration."""

from pixelvault.core.errors import (
    BackendError,
    IngestionError,
    InputValidationError,
    LadderExhaustedError,
    PayloadValidationError,
    PixelVaultError,
)

__all__ = [
    "BackendError",
    "IngestionError",
    "InputValidationError",
    "LadderExhaustedError",
    "PayloadValidationError",
    "PixelVaultError",
]
