"""Tier manifest rewriting."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from ..storage.gcs import build_download_url

logger = logging.getLogger(__name__)

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)
_URI_ATTRIBUTE = re.compile(r'URI="([^"]+)"')


def rewrite_manifest_text(text: str, bucket_name: str, base_path: str, token: str) -> str:
    """
    Make every relative reference in an HLS manifest absolute and token-bound.

    Comment lines pass through unless they carry a URI="..." attribute
    (EXT-X-MAP, EXT-X-KEY), whose relative value is resolved against
    base_path. Blank and already absolute lines are left alone; any other
    line is a segment reference.
    """
    prefix = base_path if base_path.endswith("/") else f"{base_path}/"

    def to_absolute(relative: str) -> str:
        return build_download_url(bucket_name, f"{prefix}{relative}", token)

    out = []
    for line in text.splitlines():
        stripped = line.strip()

        if stripped.startswith("#"):
            match = _URI_ATTRIBUTE.search(stripped)
            if match and not _ABSOLUTE_URL.match(match.group(1)):
                absolute = to_absolute(match.group(1))
                line = _URI_ATTRIBUTE.sub(lambda _: f'URI="{absolute}"', line, count=1)
            out.append(line)
            continue

        if not stripped or _ABSOLUTE_URL.match(stripped):
            out.append(stripped if stripped else line)
            continue

        out.append(to_absolute(stripped))

    result = "\n".join(out)
    if text.endswith("\n"):
        result += "\n"
    return result


def rewrite_manifest(manifest_path: str | Path, bucket_name: str, base_path: str, token: str) -> None:
    """Rewrite a local manifest file in place."""
    path = Path(manifest_path)
    original = path.read_text(encoding="utf-8")
    rewritten = rewrite_manifest_text(original, bucket_name, base_path, token)
    path.write_text(rewritten, encoding="utf-8")

    sample = next(
        (line for line in rewritten.splitlines() if line.strip() and not line.startswith("#")),
        None,
    )
    logger.debug(f"Rewrote manifest {path.name}, first segment: {sample}")
