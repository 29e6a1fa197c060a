"""Failure bookkeeping, partial artifact cleanup and stuck-asset correction."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from ..config import Settings, get_settings
from ..ladder import BASE_TIER
from ..storage import firestore as media_db
from ..storage import gcs
from .types import BackgroundStatus, TranscodeStatus, parse_timestamp, tier_manifest_path, utc_now_iso

logger = logging.getLogger(__name__)

MANUAL_FIX_TYPE = "reset_stuck_processing"
STUCK_FAILURE_REASON = "Processing did not finish. Please try uploading the video again."


async def record_failure(
    media_id: str,
    tier_name: str,
    error: BaseException | str,
    label: str | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """
    Append a tier failure to the record's failedQualities log.

    transcodeStatus is not touched.
    """
    settings = settings or get_settings()
    entry = {
        "name": tier_name,
        "label": label or tier_name,
        "error": str(error),
        "failedAt": utc_now_iso(),
    }
    await asyncio.to_thread(media_db.append_failed_quality, media_id, entry, settings)
    logger.warning(f"Recorded {tier_name} failure for media {media_id}: {error}")
    return entry


async def cleanup_partial_artifacts(
    hls_base_path: str | None,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> int:
    """
    Delete every generated artifact of an asset.

    Returns the number of objects deleted. Cleanup runs on a path that is
    already failing, so storage errors are logged rather than raised.
    """
    settings = settings or get_settings()
    if not hls_base_path:
        return 0

    try:
        return await asyncio.to_thread(gcs.delete_prefix, hls_base_path, bucket_name, settings)
    except Exception as e:
        logger.error(f"Failed to clean up artifacts under {hls_base_path}: {e}")
        return 0


async def finalize_background(media_id: str, settings: Settings | None = None) -> bool:
    """
    Mark background tier generation completed.

    Returns False when there was nothing to finalize, so a redelivered last
    job does not complete the chain twice.
    """
    settings = settings or get_settings()
    record = await asyncio.to_thread(media_db.get_media, media_id, settings)
    if record is None:
        logger.warning(f"Cannot finalize background processing: media {media_id} not found")
        return False

    if record.get("backgroundProcessingStatus") != BackgroundStatus.PROCESSING.value:
        logger.info(
            f"Background processing for media {media_id} already "
            f"{record.get('backgroundProcessingStatus') or BackgroundStatus.NONE.value}"
        )
        return False

    await asyncio.to_thread(
        media_db.merge_media,
        media_id,
        {
            "backgroundProcessingStatus": BackgroundStatus.COMPLETED.value,
            "backgroundProcessingCompletedAt": utc_now_iso(),
        },
        settings,
    )
    logger.info(f"Background processing completed for media {media_id}")
    return True


def _processing_age_seconds(record: dict[str, Any], now: datetime) -> float | None:
    for field in ("transcodeStartedAt", "createdAt", "transcodeUpdatedAt"):
        started = parse_timestamp(record.get(field))
        if started is not None:
            return (now - started).total_seconds()
    return None


def _has_base_tier(record: dict[str, Any], settings: Settings) -> bool:
    if (record.get("sources") or {}).get("hls"):
        return True

    hls_base_path = record.get("hlsBasePath")
    if not hls_base_path:
        return False
    return gcs.object_exists(tier_manifest_path(hls_base_path, BASE_TIER), settings=settings)


def _reset_stuck_sync(settings: Settings) -> int:
    now = datetime.now(timezone.utc)
    fixed = 0

    for record in media_db.list_processing_videos(settings):
        media_id = record["id"]
        age = _processing_age_seconds(record, now)
        if age is not None and age < settings.stuck_processing_min_age_seconds:
            logger.debug(f"Skipping media {media_id}: processing for {age:.0f}s")
            continue

        has_hls = _has_base_tier(record, settings)
        updates: dict[str, Any] = {
            "transcodeStatus": (TranscodeStatus.READY if has_hls else TranscodeStatus.FAILED).value,
            "lastManualFix": utc_now_iso(),
            "manualFixReason": "Reset stuck processing status",
        }
        if not has_hls:
            updates["transcodeFailureReason"] = STUCK_FAILURE_REASON

        media_db.merge_media(media_id, updates, settings)
        logger.info(f"Reset stuck media {media_id} to {updates['transcodeStatus']}")
        fixed += 1

    return fixed


async def reset_stuck(settings: Settings | None = None) -> int:
    """
    Correct assets left in processing by a crashed worker.

    Assets older than the configured minimum age become ready when the
    mandatory tier manifest exists, failed otherwise.

    Returns the number of assets corrected.
    """
    settings = settings or get_settings()
    return await asyncio.to_thread(_reset_stuck_sync, settings)


async def run_manual_fix(fix_id: str | None = None, settings: Settings | None = None) -> dict[str, Any]:
    """Run reset_stuck tracked by a manual fix record."""
    settings = settings or get_settings()
    fix_id = fix_id or str(uuid.uuid4())

    await asyncio.to_thread(
        media_db.save_manual_fix,
        fix_id,
        {"type": MANUAL_FIX_TYPE, "status": "processing", "startedAt": utc_now_iso()},
        settings,
    )

    try:
        count = await reset_stuck(settings)
    except Exception as e:
        logger.exception(f"Manual fix {fix_id} failed: {e}")
        await asyncio.to_thread(
            media_db.save_manual_fix,
            fix_id,
            {"status": "failed", "error": str(e), "failedAt": utc_now_iso()},
            settings,
        )
        raise

    result = {"status": "completed", "processedCount": count, "completedAt": utc_now_iso()}
    await asyncio.to_thread(media_db.save_manual_fix, fix_id, result, settings)
    logger.info(f"Manual fix {fix_id} processed {count} stuck media")
    return {"id": fix_id, "type": MANUAL_FIX_TYPE, **result}
