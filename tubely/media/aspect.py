from __future__ import annotations

import enum

LANDSCAPE_RATIO = 16 / 9
PORTRAIT_RATIO = 9 / 16
RATIO_TOLERANCE = 0.01


class AspectCategory(str, enum.Enum):
    landscape = "landscape"
    portrait = "portrait"
    other = "other"

    @property
    def ratio_tag(self) -> str:
        return _RATIO_TAGS[self]

    @property
    def key_prefix(self) -> str:
        return self.value


_RATIO_TAGS = {
    AspectCategory.landscape: "16:9",
    AspectCategory.portrait: "9:16",
    AspectCategory.other: "other",
}


def classify_aspect_ratio(width: int, height: int, *, tolerance: float = RATIO_TOLERANCE) -> AspectCategory:
    """Classify a frame size as landscape (16:9), portrait (9:16) or other.

    Args:
        width: Frame width in pixels.
        height: Frame height in pixels; must be positive.
        tolerance: Maximum absolute distance from the reference ratio.

    Returns:
        The matching category.
    """
    if height <= 0:
        raise ValueError(f"height must be positive, got {height}")
    if width < 0:
        raise ValueError(f"width must not be negative, got {width}")

    ratio = width / height
    if abs(ratio - LANDSCAPE_RATIO) <= tolerance:
        return AspectCategory.landscape
    if abs(ratio - PORTRAIT_RATIO) <= tolerance:
        return AspectCategory.portrait
    return AspectCategory.other


__all__ = ["AspectCategory", "classify_aspect_ratio", "LANDSCAPE_RATIO", "PORTRAIT_RATIO", "RATIO_TOLERANCE"]
