"""Handle object-finalized events for uploaded videos."""

from __future__ import annotations

import asyncio
import logging
import posixpath
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import Settings, get_settings
from ..ladder import plan_ladder
from ..metadata import determine_media_type, extract_metadata
from ..storage import firestore as media_db
from ..storage import gcs
from ..tasks import chain
from ..transcode.encoder import encode_tier
from ..transcode.poster import create_poster
from . import readiness
from .resolver import object_folder, resolve_media
from .types import TierResult, TranscodeStatus, utc_now_iso

logger = logging.getLogger(__name__)

GENERATED_SUFFIXES = (".m3u8", ".ts")
GENERATED_PREFIXES = ("thumb_", "poster_")


@dataclass
class StorageObjectEvent:
    """An object-finalized notification."""

    bucket: str
    name: str
    content_type: str | None = None
    size: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageObjectEvent:
        """Create from a storage notification payload."""
        size = data.get("size")
        return cls(
            bucket=data.get("bucket", ""),
            name=data.get("name", ""),
            content_type=data.get("contentType", data.get("content_type")),
            size=int(size) if size not in (None, "") else None,
        )


def skip_reason(event: StorageObjectEvent, settings: Settings | None = None) -> str | None:
    """
    Why an object should not be transcoded, or None if it should.

    Only videos under the upload prefix are handled; anything this service
    writes itself (HLS output, posters, thumbnails) is ignored.
    """
    settings = settings or get_settings()
    name = event.name

    if not name:
        return "missing object name"
    if event.bucket and event.bucket != settings.media_gcs_bucket:
        return f"bucket {event.bucket} is not the media bucket"
    if not name.startswith(settings.normalized_upload_prefix):
        return "outside upload prefix"
    if "/hls/" in name or name.lower().endswith(GENERATED_SUFFIXES):
        return "generated HLS output"
    if posixpath.basename(name).startswith(GENERATED_PREFIXES):
        return "generated thumbnail"
    if determine_media_type(event.content_type, name) != "video":
        return "not a video"
    return None


def hls_base_path_for(object_name: str) -> str:
    """Folder holding every generated artifact of a source object."""
    base = Path(posixpath.basename(object_name)).stem
    return f"{object_folder(object_name)}hls/{base}/"


async def _write_poster(
    media_id: str,
    local_source: Path,
    object_name: str,
    metadata: dict[str, Any],
    settings: Settings,
) -> None:
    base = Path(posixpath.basename(object_name)).stem
    updates = dict(metadata)
    try:
        updates["thumbnailPath"] = await asyncio.to_thread(
            create_poster,
            local_source,
            object_folder(object_name),
            base,
            metadata.get("duration"),
            settings,
        )
    except Exception as e:
        logger.warning(f"Poster generation failed for media {media_id}: {e}")

    if updates:
        await asyncio.to_thread(media_db.merge_media, media_id, updates, settings)


async def handle_object_finalized(
    payload: dict[str, Any] | StorageObjectEvent,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """
    Transcode a newly uploaded video up to first playability.

    The mandatory tier is encoded inline; the remaining tiers are handed to
    the job chain.

    Returns a summary with a "status" of skipped, unresolved, failed or ready.
    """
    settings = settings or get_settings()
    event = payload if isinstance(payload, StorageObjectEvent) else StorageObjectEvent.from_dict(payload)

    reason = skip_reason(event, settings)
    if reason:
        logger.debug(f"Skipping {event.name}: {reason}")
        return {"status": "skipped", "object": event.name, "reason": reason}

    record = await resolve_media(event.name, object_folder(event.name), settings)
    if record is None:
        return {"status": "unresolved", "object": event.name}

    media_id = record["id"]
    if record.get("transcodeStatus") == TranscodeStatus.READY.value:
        logger.info(f"Media {media_id} already ready; ignoring repeated event for {event.name}")
        return {"status": "skipped", "mediaId": media_id, "reason": "already ready"}

    token = record.get("sharedToken") or str(uuid.uuid4())
    hls_base_path = hls_base_path_for(event.name)
    storage_folder = object_folder(event.name)

    await asyncio.to_thread(
        media_db.merge_media,
        media_id,
        {
            "transcodeStatus": TranscodeStatus.PROCESSING.value,
            "transcodeStartedAt": utc_now_iso(),
            "sharedToken": token,
            "hlsBasePath": hls_base_path,
            "type": "video",
        },
        settings,
    )

    work_dir = Path(tempfile.mkdtemp(prefix="ingest_"))
    try:
        local_source = work_dir / posixpath.basename(event.name)
        width = height = None
        ladder = plan_ladder(None, None)

        try:
            await asyncio.to_thread(gcs.download_to_file, event.name, local_source, None, settings)

            try:
                probed = await asyncio.to_thread(extract_metadata, local_source)
            except RuntimeError as e:
                logger.warning(f"ffprobe failed for {event.name}, planning baseline only: {e}")
            else:
                width, height = probed.width, probed.height
                details: dict[str, Any] = {}
                if probed.duration is not None:
                    details["duration"] = probed.duration
                if width and height:
                    details["dimensions"] = {"width": width, "height": height}
                await _write_poster(media_id, local_source, event.name, details, settings)

            ladder = plan_ladder(width, height)
            logger.info(f"Media {media_id} ({width}x{height}) ladder: {[tier.name for tier in ladder]}")

            manifest_path = await encode_tier(
                local_source,
                ladder[0],
                hls_base_path=hls_base_path,
                token=token,
                settings=settings,
            )
            # Master upload and the ready write are part of the mandatory tier
            remaining = await readiness.on_base_tier_ready(
                media_id,
                TierResult.for_tier(ladder[0], manifest_path),
                ladder=ladder,
                hls_base_path=hls_base_path,
                token=token,
                settings=settings,
            )
        except Exception as e:
            logger.exception(f"Mandatory {ladder[0].name} tier failed for media {media_id}: {e}")
            await readiness.on_base_tier_failed(
                media_id, e, hls_base_path=hls_base_path, settings=settings
            )
            return {"status": "failed", "mediaId": media_id, "error": str(e)}
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    await chain.start_chain(
        media_id,
        remaining,
        ladder=ladder,
        source_object_path=event.name,
        storage_folder=storage_folder,
        hls_base_path=hls_base_path,
        token=token,
        original_resolution={"width": width, "height": height},
        bucket_name=event.bucket or settings.media_gcs_bucket,
        settings=settings,
    )

    return {
        "status": "ready",
        "mediaId": media_id,
        "ladder": [tier.name for tier in ladder],
        "pending": remaining,
    }
