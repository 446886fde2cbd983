"""
Utilities for the Chat Server

This module contains helper functions for payload validation and
coercion.
"""

from .validation import (
    MAX_MESSAGE_LENGTH,
    MAX_ROOM_NAME_LENGTH,
    MAX_ROOM_DESCRIPTION_LENGTH,
    MAX_URL_LENGTH,
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
    coerce_text,
    coerce_int,
    coerce_float,
    coerce_bool,
    url_has_extension,
    is_image_url,
    is_video_url,
    detect_video_type,
)
from .timeutil import utc_now_iso, epoch_seconds

__all__ = [
    "MAX_MESSAGE_LENGTH",
    "MAX_ROOM_NAME_LENGTH",
    "MAX_ROOM_DESCRIPTION_LENGTH",
    "MAX_URL_LENGTH",
    "IMAGE_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "coerce_text",
    "coerce_int",
    "coerce_float",
    "coerce_bool",
    "url_has_extension",
    "is_image_url",
    "is_video_url",
    "detect_video_type",
    "utc_now_iso",
    "epoch_seconds",
]
