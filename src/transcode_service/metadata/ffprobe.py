"""Extract metadata from media files using ffprobe."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import get_settings

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".webm", ".mkv"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


@dataclass
class MediaMetadata:
    """Extracted media metadata."""

    duration: float | None = None
    width: int | None = None
    height: int | None = None
    codec: str | None = None
    audio_codec: str | None = None
    bitrate: int | None = None
    format_name: str | None = None
    size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def extract_metadata(file_path: str | Path) -> MediaMetadata:
    """
    Extract metadata from a media file using ffprobe.

    Args:
        file_path: Path to the media file

    Returns:
        MediaMetadata with extracted information

    Raises:
        FileNotFoundError: If file doesn't exist
        RuntimeError: If ffprobe fails
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    cmd = [
        get_settings().ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"ffprobe timed out for {file_path}")
    except FileNotFoundError:
        raise RuntimeError("ffprobe not found. Please install ffmpeg.")

    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")

    return parse_ffprobe_output(data)


def parse_ffprobe_output(data: dict[str, Any]) -> MediaMetadata:
    """Parse ffprobe JSON output into MediaMetadata."""
    metadata = MediaMetadata()

    format_info = data.get("format", {})
    metadata.format_name = format_info.get("format_name")
    metadata.size = _safe_int(format_info.get("size"))

    if "duration" in format_info:
        metadata.duration = _safe_float(format_info["duration"])

    if "bit_rate" in format_info:
        metadata.bitrate = _safe_int(format_info["bit_rate"])

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        # First stream that reports dimensions; cover art streams come after the video
        if codec_type == "video" and metadata.width is None and stream.get("width") and stream.get("height"):
            metadata.codec = stream.get("codec_name")
            metadata.width = _safe_int(stream.get("width"))
            metadata.height = _safe_int(stream.get("height"))

            if metadata.duration is None and "duration" in stream:
                metadata.duration = _safe_float(stream["duration"])

        elif codec_type == "audio" and metadata.audio_codec is None:
            metadata.audio_codec = stream.get("codec_name")

    return metadata


def _safe_float(value: Any) -> float | None:
    """Safely convert value to float."""
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _safe_int(value: Any) -> int | None:
    """Safely convert value to int."""
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def determine_media_type(content_type: str | None, filename: str | None = None) -> str:
    """
    Classify an upload as "video", "image" or "other".

    The content type wins; the file extension is the fallback for uploads
    stored as application/octet-stream.
    """
    content_type = content_type or ""
    if content_type.startswith("video/"):
        return "video"
    if content_type.startswith("image/"):
        return "image"

    if filename:
        ext = Path(filename).suffix.lower()
        if ext in VIDEO_EXTENSIONS:
            return "video"
        if ext in IMAGE_EXTENSIONS:
            return "image"

    return "other"
