"""PixelVault - AI image generation orchestrator for the PixelVault gallery."""

__version__ = "1.0.0"
