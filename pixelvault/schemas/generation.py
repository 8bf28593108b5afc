"""Generation request and settings schemas.

Settings arrive from callers as loosely-typed JSON, so field types are kept
permissive here and bounds are enforced by validate_request, which raises
InputValidationError (a terminal, never-retried error) before any backend is
contacted.

Examples:
    >>> from pixelvault.schemas.generation import GenerationSettings, validate_request
    >>> request = validate_request("a red fox in snow", GenerationSettings(size="768x512"))
    >>> request.settings.dimensions
    (768, 512)

Tests:
    - tests/unit/test_schemas.py::TestValidateRequest
    - tests/unit/test_schemas.py::TestGenerationSettings
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pixelvault.config import BackendType
from pixelvault.core.errors import InputValidationError

PROMPT_MIN_LENGTH = 3
PROMPT_MAX_LENGTH = 1000
DIMENSION_MIN = 64
DIMENSION_MAX = 2048
STEPS_MIN = 1
STEPS_MAX = 100

_SIZE_PATTERN = re.compile(r"^(\d+)x(\d+)$")

# Aliases accepted for backend names sent by older clients
_BACKEND_ALIASES = {"ai-horde": "horde", "stable-horde": "horde", "hf": "huggingface"}


class GenerationSettings(BaseModel):
    """Caller-supplied generation settings.

    Attributes:
        backend: Requested backend (first rung of the fallback ladder)
        model: Backend model name; each adapter has its own default
        size: Target size as WIDTHxHEIGHT
        steps: Sampling steps
        guidance: Guidance (CFG) scale
        negative_prompt: Things to keep out of the image
        sampler: Sampler name for diffusion backends
        horde_models: AI Horde model pool
        hf_model: Hugging Face model repository id
        quality: OpenAI quality option
        style: OpenAI style option
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    backend: BackendType | None = Field(default=None, alias="provider")
    model: str | None = None
    size: str = "512x512"
    steps: int = 20
    guidance: float = 7.5
    negative_prompt: str | None = Field(default=None, alias="negativePrompt")
    sampler: str | None = None
    horde_models: list[str] | None = Field(default=None, alias="hordeModels")
    hf_model: str | None = Field(default=None, alias="hfModel")
    quality: str | None = None
    style: str | None = None

    @field_validator("backend", mode="before")
    @classmethod
    def normalize_backend(cls, v: object) -> object:
        """Accept legacy backend aliases such as 'ai-horde'."""
        if isinstance(v, str):
            return _BACKEND_ALIASES.get(v.lower(), v.lower())
        return v

    @property
    def dimensions(self) -> tuple[int, int]:
        """Parsed (width, height); falls back to 512x512 if unparseable."""
        match = _SIZE_PATTERN.match(self.size)
        if not match:
            return 512, 512
        return int(match.group(1)), int(match.group(2))


class GenerationRequest(BaseModel):
    """A validated, immutable generation request."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    settings: GenerationSettings


def validate_request(prompt: str, settings: GenerationSettings | None = None) -> GenerationRequest:
    """Validate prompt and settings bounds.

    Args:
        prompt: Raw prompt text.
        settings: Caller settings (defaults applied when None).

    Returns:
        GenerationRequest with the trimmed prompt.

    Raises:
        InputValidationError: If any bound is violated.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise InputValidationError("Prompt is required and must be a non-empty string")

    trimmed = prompt.strip()
    if len(trimmed) < PROMPT_MIN_LENGTH:
        raise InputValidationError(
            f"Prompt must be at least {PROMPT_MIN_LENGTH} characters long"
        )
    if len(trimmed) > PROMPT_MAX_LENGTH:
        raise InputValidationError(f"Prompt cannot exceed {PROMPT_MAX_LENGTH} characters")

    settings = settings or GenerationSettings()

    if not STEPS_MIN <= settings.steps <= STEPS_MAX:
        raise InputValidationError(
            f"Steps must be a number between {STEPS_MIN} and {STEPS_MAX}"
        )

    match = _SIZE_PATTERN.match(settings.size)
    if not match:
        raise InputValidationError("Size must be in format WIDTHxHEIGHT (e.g., 1024x1024)")
    width, height = int(match.group(1)), int(match.group(2))
    if not (DIMENSION_MIN <= width <= DIMENSION_MAX and DIMENSION_MIN <= height <= DIMENSION_MAX):
        raise InputValidationError(
            f"Image dimensions must be between {DIMENSION_MIN}x{DIMENSION_MIN} "
            f"and {DIMENSION_MAX}x{DIMENSION_MAX}"
        )

    if settings.guidance <= 0:
        raise InputValidationError("Guidance scale must be positive")

    return GenerationRequest(prompt=trimmed, settings=settings)
