"""
Validation Utilities

Contains helpers for coercing and bounding untrusted payload values.
None of these raise on malformed input: they coerce or truncate instead.
"""

import math
from typing import Any, Optional
from urllib.parse import urlparse

# Payload bounds
MAX_MESSAGE_LENGTH = 1000
MAX_ROOM_NAME_LENGTH = 100
MAX_ROOM_DESCRIPTION_LENGTH = 500
MAX_URL_LENGTH = 2048

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")
VIDEO_EXTENSIONS = (".mp4", ".webm", ".ogg", ".mov", ".m4v")


def coerce_text(value: Any, max_length: Optional[int] = None) -> str:
    """
    Turn an arbitrary payload value into a string.

    Args:
        value: The raw value; None becomes the empty string
        max_length: Optional truncation length

    Returns:
        str: The coerced, possibly truncated string
    """
    if value is None:
        text = ""
    elif isinstance(value, str):
        text = value
    elif isinstance(value, (int, float, bool)):
        text = str(value)
    else:
        text = ""
    if max_length is not None:
        text = text[:max_length]
    return text


def coerce_int(value: Any, default: int = 0) -> int:
    """Parse an integer leniently, falling back to default."""
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def coerce_float(value: Any, default: float) -> float:
    """Parse a float leniently; garbage and non-finite values give the default."""
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(result):
        return default
    return result


TRUE_STRINGS = ("true", "1", "yes", "on")


def coerce_bool(value: Any) -> bool:
    """Parse a flag; strings count as true only when they spell it out."""
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


def url_has_extension(url: str, extensions) -> bool:
    """
    Check whether the path component of a URL ends in one of the extensions.

    The comparison is case-insensitive and ignores query strings and
    fragments.
    """
    if not url or not isinstance(url, str):
        return False
    try:
        path = urlparse(url.strip()).path
    except ValueError:
        return False
    return path.lower().endswith(tuple(extensions))


def is_image_url(url: str) -> bool:
    """Return True for URLs that point at a recognised image file."""
    return url_has_extension(url, IMAGE_EXTENSIONS)


def is_video_url(url: str) -> bool:
    """Return True for URLs that point at a recognised video file."""
    return url_has_extension(url, VIDEO_EXTENSIONS)


def detect_video_type(url: str) -> str:
    """
    Guess the player type for a shared video URL.

    Returns:
        str: "youtube", "mp4" or "url"
    """
    lowered = (url or "").lower()
    if "youtube.com" in lowered or "youtu.be" in lowered:
        return "youtube"
    if url_has_extension(lowered, (".mp4",)):
        return "mp4"
    return "url"
