"""Utility helpers shared across server modules."""

import mimetypes
from pathlib import Path

from config import VIDEO_MIME_TYPES


def is_video_file(file_path: Path) -> bool:
    return file_path.suffix.lower() in VIDEO_MIME_TYPES


def get_content_type(file_path: Path) -> str:
    video_type = VIDEO_MIME_TYPES.get(file_path.suffix.lower())
    if video_type is not None:
        return video_type
    content_type, _encoding = mimetypes.guess_type(file_path.name)
    return content_type or "application/octet-stream"


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KiB", "MiB", "GiB"):
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"
