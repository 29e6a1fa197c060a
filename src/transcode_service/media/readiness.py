"""
Progressive readiness state machine.

transcodeStatus moves processing -> ready (or failed when the mandatory tier
fails) and never leaves ready. backgroundProcessingStatus independently
tracks the tiers generated after the mandatory one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..config import Settings, get_settings
from ..errors import TranscodeTimeoutError
from ..hls import master
from ..ladder import BASE_TIER, TierConfig
from ..pubsub import publish_transcode_event
from ..storage import firestore as media_db
from ..storage import gcs
from . import recovery
from .types import BackgroundStatus, TierResult, TranscodeStatus, master_playlist_path

logger = logging.getLogger(__name__)

TIMEOUT_FAILURE_REASON = (
    "Processing timed out. The video may be too large or too long; "
    "try a shorter clip or a lower resolution."
)
GENERIC_FAILURE_REASON = "We couldn't process this video. Please try uploading it again."


def failure_reason(error: BaseException) -> str:
    """User-facing explanation of a mandatory tier failure."""
    if isinstance(error, TranscodeTimeoutError):
        return TIMEOUT_FAILURE_REASON
    return GENERIC_FAILURE_REASON


def _tier_results(record: dict[str, Any] | None) -> list[TierResult]:
    if not record:
        return []
    return [TierResult.from_dict(entry) for entry in record.get("qualityLevels") or []]


async def _upload_master(
    hls_base_path: str,
    text: str,
    token: str,
    bucket_name: str | None,
    settings: Settings,
) -> str:
    path = master_playlist_path(hls_base_path)
    await asyncio.to_thread(
        gcs.upload_text,
        text,
        path,
        token=token,
        bucket_name=bucket_name,
        settings=settings,
    )
    return path


async def on_base_tier_ready(
    media_id: str,
    result: TierResult,
    *,
    ladder: list[TierConfig],
    hls_base_path: str,
    token: str,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> list[str]:
    """
    Make the asset playable once the mandatory tier is uploaded.

    Returns the names of the tiers left for background generation, in
    ladder order. The caller hands them to the job chain.
    """
    settings = settings or get_settings()
    bucket_name = bucket_name or settings.media_gcs_bucket

    master_path = await _upload_master(
        hls_base_path,
        master.build_master_playlist([result], bucket_name, token),
        token,
        bucket_name,
        settings,
    )

    remaining = [tier.name for tier in ladder if tier.name != BASE_TIER]
    updates = {
        "qualityLevels": [result.to_dict()],
        "sources": {"hls": result.storage_path, "hlsMaster": master_path},
        "hlsBasePath": hls_base_path,
        "transcodeStatus": TranscodeStatus.READY.value,
        "backgroundProcessingStatus": (
            BackgroundStatus.PROCESSING if remaining else BackgroundStatus.NONE
        ).value,
        "backgroundProcessingTargetQualities": remaining,
        "qualityConfigs": {tier.name: tier.to_dict() for tier in ladder},
    }
    await asyncio.to_thread(media_db.merge_media, media_id, updates, settings)
    logger.info(f"Media {media_id} ready at {result.name}; {len(remaining)} tiers pending")

    publish_transcode_event(
        "transcode.ready",
        media_id,
        quality=result.name,
        status=TranscodeStatus.READY.value,
        metadata={"remainingQualities": remaining},
    )
    return remaining


async def on_base_tier_failed(
    media_id: str,
    error: BaseException,
    *,
    hls_base_path: str | None,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> bool:
    """
    Fail the asset after the mandatory tier failed.

    Partial artifacts are deleted first. Returns False without changes when
    the asset is already ready.
    """
    settings = settings or get_settings()
    record = await asyncio.to_thread(media_db.get_media, media_id, settings)
    if record and record.get("transcodeStatus") == TranscodeStatus.READY.value:
        logger.warning(f"Ignoring {BASE_TIER} failure for media {media_id}: already ready")
        return False

    deleted = await recovery.cleanup_partial_artifacts(hls_base_path, bucket_name, settings)
    logger.info(f"Removed {deleted} partial artifacts for media {media_id}")

    reason = failure_reason(error)
    await asyncio.to_thread(
        media_db.merge_media,
        media_id,
        {
            "transcodeStatus": TranscodeStatus.FAILED.value,
            "qualityLevels": [],
            "backgroundProcessingStatus": BackgroundStatus.NONE.value,
            "backgroundProcessingTargetQualities": [],
            "transcodeFailureReason": reason,
            "transcodeError": str(error),
        },
        settings,
    )
    await recovery.record_failure(media_id, BASE_TIER, error, settings=settings)

    publish_transcode_event(
        "transcode.failed",
        media_id,
        quality=BASE_TIER,
        status=TranscodeStatus.FAILED.value,
        metadata={"reason": reason, "timeout": isinstance(error, TranscodeTimeoutError)},
    )
    return True


async def on_tier_completed(
    media_id: str,
    result: TierResult,
    *,
    hls_base_path: str,
    token: str,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> list[TierResult]:
    """
    Merge a background tier into the asset and re-publish the master playlist.

    Redelivered completions collapse into one entry per tier name.
    transcodeStatus is left as is.
    """
    settings = settings or get_settings()
    bucket_name = bucket_name or settings.media_gcs_bucket

    record = await asyncio.to_thread(media_db.get_media, media_id, settings)
    merged, text = master.build(_tier_results(record), result, bucket_name, token)
    master_path = await _upload_master(hls_base_path, text, token, bucket_name, settings)

    await asyncio.to_thread(
        media_db.merge_media,
        media_id,
        {
            "qualityLevels": [entry.to_dict() for entry in merged],
            "sources": {"hlsMaster": master_path},
        },
        settings,
    )
    logger.info(f"Media {media_id} now has {len(merged)} qualities ({result.name} added)")

    publish_transcode_event(
        "transcode.quality_completed",
        media_id,
        quality=result.name,
        metadata={"qualities": [entry.name for entry in merged]},
    )
    return merged


async def on_tier_failed(
    media_id: str,
    tier: TierConfig,
    error: BaseException,
    settings: Settings | None = None,
) -> None:
    """Record a background tier failure; status and chain are unaffected."""
    await recovery.record_failure(media_id, tier.name, error, label=tier.label, settings=settings)


async def on_chain_finished(media_id: str, settings: Settings | None = None) -> bool:
    """Complete background processing once the chain runs out of tiers."""
    finalized = await recovery.finalize_background(media_id, settings)
    if finalized:
        publish_transcode_event(
            "transcode.background_completed",
            media_id,
            status=TranscodeStatus.READY.value,
        )
    return finalized
