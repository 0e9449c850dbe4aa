from __future__ import annotations

import secrets
from pathlib import PurePosixPath
from typing import Callable, Optional

from .aspect import AspectCategory

KEY_TOKEN_BYTES = 32
DEFAULT_VIDEO_EXTENSION = ".mp4"


def object_key_extension(filename: Optional[str], default: str = DEFAULT_VIDEO_EXTENSION) -> str:
    """Return the lower-cased extension of ``filename`` or ``default``."""
    if not filename:
        return default
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix
    if len(suffix) < 2 or not suffix[1:].isalnum():
        return default
    return suffix.lower()


def build_object_key(
    category: AspectCategory,
    filename: Optional[str],
    *,
    default_extension: str = DEFAULT_VIDEO_EXTENSION,
    token_factory: Callable[[int], str] = secrets.token_hex,
) -> str:
    """Derive ``<category>/<random hex><ext>`` for a processed upload.

    The token carries 256 bits from the OS CSPRNG; keys are never derived from
    content, so identical uploads land under distinct keys.
    """
    token = token_factory(KEY_TOKEN_BYTES)
    return f"{category.key_prefix}/{token}{object_key_extension(filename, default_extension)}"


__all__ = ["build_object_key", "object_key_extension", "KEY_TOKEN_BYTES", "DEFAULT_VIDEO_EXTENSION"]
