"""Master playlist assembly."""

from __future__ import annotations

from datetime import datetime, timezone

from ..media.types import TierResult, parse_timestamp
from ..storage.gcs import build_download_url

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _completed_key(result: TierResult) -> datetime:
    return parse_timestamp(result.completed_at) or _EPOCH


def merge_tier(existing: list[TierResult], incoming: TierResult) -> list[TierResult]:
    """
    Merge a completed tier into the accumulated results, unique by name.

    When a tier is already present the entry with the later completedAt
    wins; on a tie the incoming entry replaces the stored one. Duplicates
    already present in existing are collapsed the same way.
    """
    merged: dict[str, TierResult] = {}
    for result in [*existing, incoming]:
        current = merged.get(result.name)
        if current is None or _completed_key(result) >= _completed_key(current):
            merged[result.name] = result
    return list(merged.values())


def build_master_playlist(results: list[TierResult], bucket_name: str, token: str) -> str:
    """Render the master playlist, one variant per tier in ascending bandwidth."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-INDEPENDENT-SEGMENTS"]
    for result in sorted(results, key=lambda r: (r.bandwidth, r.name)):
        attributes = [f"BANDWIDTH={result.bandwidth}"]
        if result.resolution:
            attributes.append(f"RESOLUTION={result.resolution}")
        attributes.append(f'NAME="{result.name}"')
        lines.append(f"#EXT-X-STREAM-INF:{','.join(attributes)}")
        lines.append(build_download_url(bucket_name, result.storage_path, token))
    return "\n".join(lines) + "\n"


def build(
    existing: list[TierResult],
    incoming: TierResult,
    bucket_name: str,
    token: str,
) -> tuple[list[TierResult], str]:
    """Merge a new tier and render the resulting master playlist."""
    merged = merge_tier(existing, incoming)
    return merged, build_master_playlist(merged, bucket_name, token)
