"""Poster frame extraction."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from ..config import Settings, get_settings
from ..storage import gcs

logger = logging.getLogger(__name__)


def poster_seek_seconds(duration: float | None) -> float:
    """Seek to 10% of the clip so the poster is not a black lead-in frame."""
    if not duration or duration <= 0:
        return 0.0
    return round(duration * 0.1, 3)


def extract_poster(
    source_path: str | Path,
    output_path: str | Path,
    duration: float | None,
    settings: Settings | None = None,
) -> Path:
    """Write a single JPEG frame of the source to output_path."""
    settings = settings or get_settings()
    try:
        result = subprocess.run(
            [
                settings.ffmpeg_path,
                "-y",
                "-ss",
                str(poster_seek_seconds(duration)),
                "-i",
                str(source_path),
                "-frames:v",
                "1",
                "-q:v",
                "2",
                str(output_path),
            ],
            capture_output=True,
            timeout=60,
        )
    except FileNotFoundError:
        raise RuntimeError("ffmpeg not found. Please install ffmpeg.")

    if result.returncode != 0:
        raise RuntimeError(f"ffmpeg failed: {result.stderr.decode(errors='ignore')[:200]}")
    return Path(output_path)


def create_poster(
    source_path: str | Path,
    storage_folder: str,
    base_name: str,
    duration: float | None,
    settings: Settings | None = None,
) -> str:
    """
    Extract and upload the poster frame next to the source.

    Returns the poster's storage path.
    """
    settings = settings or get_settings()
    local = Path(source_path).with_name(f"poster_{base_name}.jpg")
    destination = f"{storage_folder.rstrip('/')}/poster_{base_name}.jpg"
    try:
        extract_poster(source_path, local, duration, settings)
        gcs.upload_file(local, destination, content_type="image/jpeg", settings=settings)
    finally:
        local.unlink(missing_ok=True)

    logger.info(f"Poster uploaded to {destination}")
    return destination
