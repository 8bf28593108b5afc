"""Application configuration with Pydantic Settings.

This module provides centralized configuration management using pydantic-settings.
Settings are loaded from environment variables and .env files. Everything here
is read-only after startup; request handlers and the job poller only read it.

Examples:
    >>> from pixelvault.config import get_settings
    >>> settings = get_settings()
    >>> settings.DEFAULT_BACKEND
    <BackendType.HORDE: 'horde'>

    >>> settings.get_ladder(BackendType.GEMINI)
    [<BackendType.GEMINI: 'gemini'>, <BackendType.HORDE: 'horde'>, ...]

Tests:
    - tests/unit/test_config.py::TestSettings
    - tests/unit/test_config.py::TestFallbackLadders
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendType(str, Enum):
    """Supported image generation backends."""

    OPENAI = "openai"
    GEMINI = "gemini"
    HUGGINGFACE = "huggingface"
    HORDE = "horde"
    KOBOLD = "kobold"


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# Fallback order tried after the requested backend fails.
# Kept as data so deployments can override it via FALLBACK_LADDERS.
FALLBACK_LADDERS: dict[BackendType, list[BackendType]] = {
    BackendType.HORDE: [BackendType.GEMINI, BackendType.HUGGINGFACE, BackendType.KOBOLD],
    BackendType.GEMINI: [BackendType.HORDE, BackendType.HUGGINGFACE, BackendType.KOBOLD],
    BackendType.HUGGINGFACE: [BackendType.GEMINI, BackendType.HORDE, BackendType.KOBOLD],
    BackendType.KOBOLD: [BackendType.GEMINI, BackendType.HUGGINGFACE, BackendType.HORDE],
    BackendType.OPENAI: [BackendType.GEMINI, BackendType.HUGGINGFACE, BackendType.KOBOLD],
}

# Human-readable labels used in captions and API metadata
BACKEND_LABELS: dict[BackendType, str] = {
    BackendType.OPENAI: "OpenAI DALL-E",
    BackendType.GEMINI: "Google Imagen",
    BackendType.HUGGINGFACE: "Hugging Face",
    BackendType.HORDE: "AI Horde (Free)",
    BackendType.KOBOLD: "KoboldCpp",
}

ANONYMOUS_HORDE_KEY = "0000000000"


class Settings(BaseSettings):
    """Application settings with backend and CDN configuration.

    Settings are loaded from environment variables and .env file. No backend
    key is strictly required: AI Horde accepts the anonymous key, and
    backends without credentials are skipped by the fallback ladder.

    Attributes:
        DATABASE_URL: Database connection string (SQLite or PostgreSQL)
        OPENAI_API_KEY: OpenAI key for DALL-E
        GEMINI_API_KEY: Google generative language key for Imagen
        HUGGING_FACE_API_KEY: Hugging Face inference key
        AI_HORDE_API_KEY: AI Horde key (anonymous key when unset)
        KOBOLD_API_URL: Base URL of a self-hosted KoboldCpp instance
        CLOUDINARY_CLOUD_NAME: CDN cloud name
        CLOUDINARY_UPLOAD_PRESET: Unsigned upload preset
        DEFAULT_BACKEND: Backend used when a request does not name one
        POLL_INTERVAL_SECONDS: Job poller tick interval
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./pixelvault.db",
        description="Database connection string",
    )

    # Backend credentials
    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    GEMINI_API_KEY: str | None = Field(default=None, description="Gemini API key")
    HUGGING_FACE_API_KEY: str | None = Field(
        default=None,
        description="Hugging Face inference API key",
    )
    AI_HORDE_API_KEY: str = Field(
        default=ANONYMOUS_HORDE_KEY,
        description="AI Horde API key (anonymous key has lowest priority)",
    )
    KOBOLD_API_URL: str | None = Field(
        default=None,
        description="Base URL of a self-hosted KoboldCpp instance",
    )
    KOBOLD_API_KEY: str | None = Field(
        default=None,
        description="Optional bearer token for KoboldCpp",
    )

    # Backend endpoints (overridable for proxies and tests)
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1")
    GEMINI_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
    )
    HUGGING_FACE_BASE_URL: str = Field(
        default="https://api-inference.huggingface.co",
    )
    AI_HORDE_BASE_URL: str = Field(default="https://aihorde.net/api")
    CLIENT_AGENT: str = Field(
        default="PixelVault:1.0:admin@pixelvault.app",
        description="Client-Agent header sent to AI Horde",
    )

    # CDN
    CLOUDINARY_CLOUD_NAME: str | None = Field(default=None, description="CDN cloud name")
    CLOUDINARY_UPLOAD_PRESET: str | None = Field(
        default=None,
        description="Unsigned upload preset",
    )
    CLOUDINARY_FOLDER: str = Field(default="pixelvault", description="Upload folder")
    CLOUDINARY_API_BASE_URL: str = Field(default="https://api.cloudinary.com/v1_1")
    CLOUDINARY_DELIVERY_PREFIX: str = Field(
        default="https://res.cloudinary.com/",
        description="Expected prefix of every secure_url returned by the CDN",
    )

    # Generation
    DEFAULT_BACKEND: BackendType = Field(
        default=BackendType.HORDE,
        description="Backend used when a request does not specify one",
    )
    FALLBACK_LADDERS: dict[BackendType, list[BackendType]] | None = Field(
        default=None,
        description="Override of the per-backend fallback order",
    )

    # Job poller
    POLLER_ENABLED: bool = Field(default=True, description="Run the background job poller")
    POLL_INTERVAL_SECONDS: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between poller ticks",
    )

    # Application Settings
    ENVIRONMENT: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )
    DEBUG: bool = Field(default=True, description="Enable debug mode")

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format."""
        valid_prefixes = ("sqlite", "postgresql", "postgres")
        if not any(v.startswith(prefix) for prefix in valid_prefixes):
            raise ValueError(
                f"DATABASE_URL must start with one of: {valid_prefixes}"
            )
        return v

    @field_validator("KOBOLD_API_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Normalize the KoboldCpp base URL."""
        if v is None:
            return None
        return v.rstrip("/") or None

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == Environment.PRODUCTION

    @property
    def cdn_configured(self) -> bool:
        """Check if CDN uploads can be attempted."""
        return bool(self.CLOUDINARY_CLOUD_NAME and self.CLOUDINARY_UPLOAD_PRESET)

    def has_backend(self, backend: BackendType) -> bool:
        """Check if a backend has the credentials it needs.

        Args:
            backend: The backend to check.

        Returns:
            bool: True if the backend can be called.
        """
        if backend == BackendType.OPENAI:
            return bool(self.OPENAI_API_KEY)
        if backend == BackendType.GEMINI:
            return bool(self.GEMINI_API_KEY)
        if backend == BackendType.HUGGINGFACE:
            return bool(self.HUGGING_FACE_API_KEY)
        if backend == BackendType.HORDE:
            return True
        if backend == BackendType.KOBOLD:
            return bool(self.KOBOLD_API_URL)
        return False

    def get_ladder(self, primary: BackendType) -> list[BackendType]:
        """Build the ordered fallback ladder for a requested backend.

        The requested backend always comes first; duplicates are dropped.

        Args:
            primary: Backend requested by the caller.

        Returns:
            Ordered list of backends to try.
        """
        ladders = self.FALLBACK_LADDERS or FALLBACK_LADDERS
        ladder = [primary]
        for backend in ladders.get(primary, []):
            if backend not in ladder:
                ladder.append(backend)
        return ladder


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The application settings.
    """
    return Settings()
