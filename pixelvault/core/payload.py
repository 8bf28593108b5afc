"""Inline image payload validation.

Backends return images either as a remote URL or as inline base64 data. The
inline form is normalized to a data URL and validated here before anything is
uploaded. Validation is pure: no I/O, no retries, and every failure is a
terminal PayloadValidationError whose reason distinguishes malformed input,
decode failure, truncated data and oversized data.

Examples:
    >>> from pixelvault.core.payload import validate_data_url, to_data_url
    >>> payload = validate_data_url(to_data_url(b64_png, "image/png"))
    >>> payload.mime_type
    'image/png'

Tests:
    - tests/unit/test_core/test_payload.py
"""

from __future__ import annotations

import base64
import binascii
import re

from pixelvault.core.errors import PayloadReason, PayloadValidationError
from pixelvault.schemas.assets import ValidatedPayload

MIN_IMAGE_BYTES = 100
MAX_IMAGE_BYTES = 10 * 1024 * 1024

DATA_URL_PATTERN = re.compile(
    r"^data:image/(png|jpeg|jpg|webp|gif);base64,(.+)$",
    re.DOTALL,
)

# Embedded data URLs inside free text (self-hosted text responses)
EMBEDDED_DATA_URL_PATTERN = re.compile(
    r"data:image/(?:png|jpeg|jpg|webp|gif);base64,[A-Za-z0-9+/=]+"
)


def to_data_url(body: str, mime_type: str = "image/png") -> str:
    """Wrap a bare base64 body in a data URL, leaving data URLs untouched."""
    if body.startswith("data:"):
        return body
    return f"data:{mime_type};base64,{body}"


def validate_data_url(payload: str) -> ValidatedPayload:
    """Validate and decode a base64 image data URL.

    Args:
        payload: String of the form data:image/<type>;base64,<body>.

    Returns:
        ValidatedPayload with decoded bytes and MIME type.

    Raises:
        PayloadValidationError: If the prefix is missing, the body does not
            decode, or the decoded size is outside [100 B, 10 MiB].
    """
    if not payload or not isinstance(payload, str):
        raise PayloadValidationError("Base64 string is required", PayloadReason.MALFORMED)

    match = DATA_URL_PATTERN.match(payload.strip())
    if not match:
        raise PayloadValidationError(
            "Base64 must include data URL prefix "
            "(data:image/png;base64, or data:image/jpeg;base64,)",
            PayloadReason.MALFORMED,
        )

    subtype, body = match.groups()
    try:
        data = base64.b64decode("".join(body.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadValidationError("Invalid base64 encoding", PayloadReason.DECODE_FAILED) from e

    if len(data) < MIN_IMAGE_BYTES:
        raise PayloadValidationError(
            "Base64 data appears to be truncated or too small",
            PayloadReason.TRUNCATED,
        )
    if len(data) > MAX_IMAGE_BYTES:
        raise PayloadValidationError("Base64 data exceeds 10MB limit", PayloadReason.TOO_LARGE)

    return ValidatedPayload(data=data, mime_type=f"image/{subtype}")


def validate_bytes(data: bytes, mime_type: str) -> ValidatedPayload:
    """Apply the same size bounds to raw bytes (downloads, binary responses).

    Raises:
        PayloadValidationError: If the data is truncated or too large.
    """
    if len(data) < MIN_IMAGE_BYTES:
        raise PayloadValidationError(
            "Image data appears to be truncated or too small",
            PayloadReason.TRUNCATED,
        )
    if len(data) > MAX_IMAGE_BYTES:
        raise PayloadValidationError("Image data exceeds 10MB limit", PayloadReason.TOO_LARGE)
    return ValidatedPayload(data=data, mime_type=mime_type)


def find_embedded_data_url(text: str) -> str | None:
    """Return the first image data URL embedded in free text, if any."""
    match = EMBEDDED_DATA_URL_PATTERN.search(text or "")
    return match.group(0) if match else None
