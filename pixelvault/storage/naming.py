"""Public id, filename and slug generation for ingested assets.

Format: {folder}/ai-generated-{uuid4}

Examples:
    >>> from pixelvault.storage.naming import sanitize_slug, generate_public_id
    >>> sanitize_slug("A red fox, in snow!")
    'a-red-fox-in-snow'
    >>> generate_public_id("pixelvault", uuid_str="7c1e...")
    'pixelvault/ai-generated-7c1e...'
    >>> generate_original_filename("A red fox, in snow!", "png")
    'ai-generated-A-red-fox--in-snow-.png'
"""

from __future__ import annotations

import re
import uuid

PUBLIC_ID_PREFIX = "ai-generated"


def sanitize_slug(prompt: str, max_length: int = 60) -> str:
    """Sanitize a prompt into a URL-safe slug.

    Rules:
        - Lowercase
        - Strip non-alphanumeric except hyphens
        - Collapse multiple hyphens
        - Truncate to max_length
        - Fallback to 'image-{uuid6}' if empty

    Args:
        prompt: Raw prompt text.
        max_length: Maximum slug length (default 60).

    Returns:
        Sanitized slug string.
    """
    slug = prompt.lower().strip()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    slug = slug.strip("-")[:max_length].rstrip("-")
    if not slug:
        slug = f"image-{uuid.uuid4().hex[:6]}"
    return slug


def generate_public_id(folder: str, uuid_str: str | None = None) -> str:
    """Generate a fresh CDN public id.

    Every call yields a new id, so retried or repeated uploads never
    overwrite an existing asset.

    Args:
        folder: CDN folder.
        uuid_str: Override UUID (defaults to random uuid4).

    Returns:
        Public id string.
    """
    if uuid_str is None:
        uuid_str = str(uuid.uuid4())
    return f"{folder.strip('/')}/{PUBLIC_ID_PREFIX}-{uuid_str}"


def generate_original_filename(prompt: str, file_format: str | None) -> str:
    """Build the original filename recorded for a generated image.

    The first 30 prompt characters are kept, with anything that is not a
    letter or digit replaced by a hyphen.
    """
    stem = re.sub(r"[^a-zA-Z0-9]", "-", prompt[:30])
    return f"{PUBLIC_ID_PREFIX}-{stem}.{file_format or 'jpg'}"
