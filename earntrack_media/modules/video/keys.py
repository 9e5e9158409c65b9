"""Object key layout of a video and its derived artifacts."""

import re
import time
import uuid
from typing import Optional

from earntrack_media.modules.transcoding.models import (
    FORMAT_EXTENSIONS,
    Resolution,
    TranscodeFormat,
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    """Replace everything but letters, digits, dots and dashes with ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", filename) or "upload"


def raw_video_key(owner_id: uuid.UUID, filename: str, timestamp_ms: Optional[int] = None) -> str:
    """``videos/<owner>/<epoch ms>_<filename>``."""
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    return f"videos/{owner_id}/{timestamp_ms}_{sanitize_filename(filename)}"


def thumbnail_key(video_id: uuid.UUID) -> str:
    return f"thumbnails/{video_id}.jpg"


def transcoded_prefix(video_id: uuid.UUID) -> str:
    return f"videos/transcoded/{video_id}/"


def rendition_key(video_id: uuid.UUID, fmt: TranscodeFormat, resolution: Resolution) -> str:
    """Key of a progressive rendition, e.g. ``videos/transcoded/<id>/HD_720P_MP4.mp4``."""
    return f"{transcoded_prefix(video_id)}{resolution.value}_{fmt.value}.{FORMAT_EXTENSIONS[fmt]}"


def hls_prefix(video_id: uuid.UUID) -> str:
    return f"hls/{video_id}/"


def variant_playlist_name(resolution: Resolution) -> str:
    return f"playlist_{resolution.value}.m3u8"


def hls_variant_key(video_id: uuid.UUID, resolution: Resolution) -> str:
    return f"{hls_prefix(video_id)}{variant_playlist_name(resolution)}"
