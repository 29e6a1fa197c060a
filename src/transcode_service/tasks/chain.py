"""
Sequential tier job chain.

Each job encodes one tier and enqueues exactly one successor for the head
of its remaining tier list, so an asset never has more than one background
encode in flight. Everything a job needs travels in the message or the
persisted qualityConfigs. The record names the tier the chain expects
next, and a redelivered job for any other tier is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from ..config import Settings, get_settings
from ..errors import ChainEnqueueError
from ..ladder import TierConfig, get_tier
from ..media import readiness, recovery
from ..media.types import BackgroundStatus, TierResult, TranscodeJobMessage, TranscodeStatus
from ..storage import firestore as media_db
from ..storage import gcs
from ..transcode.encoder import encode_tier
from .queue import get_task_queue

logger = logging.getLogger(__name__)

# Tier of the one job the chain currently expects to run for an asset
CURRENT_TIER_FIELD = "backgroundProcessingCurrentQuality"


def tier_config_for(name: str, quality_configs: dict[str, Any] | None = None) -> TierConfig:
    """Tier parameters persisted on the record, falling back to the static table."""
    stored = (quality_configs or {}).get(name)
    if stored:
        return TierConfig.from_dict({**stored, "name": name})
    return get_tier(name)


def next_job(
    message: TranscodeJobMessage,
    quality_configs: dict[str, Any] | None = None,
) -> TranscodeJobMessage | None:
    """The successor of a job, or None when the chain is exhausted."""
    if not message.remaining_tier_names:
        return None

    head, *tail = message.remaining_tier_names
    return TranscodeJobMessage(
        media_id=message.media_id,
        tier_name=head,
        source_object_path=message.source_object_path,
        hls_base_path=message.hls_base_path,
        shared_token=message.shared_token,
        tier_config=tier_config_for(head, quality_configs),
        remaining_tier_names=tail,
        storage_folder=message.storage_folder,
        original_resolution=dict(message.original_resolution),
        bucket=message.bucket,
    )


async def enqueue(message: TranscodeJobMessage) -> str:
    """
    Push one job to the task queue.

    Raises:
        ChainEnqueueError: The queue rejected the job or was unreachable
    """
    try:
        queue = await get_task_queue()
        return await queue.enqueue_transcode(message)
    except Exception as e:
        raise ChainEnqueueError(
            f"Failed to enqueue {message.tier_name} for media {message.media_id}: {e}"
        ) from e


async def _enqueue_or_record(message: TranscodeJobMessage, settings: Settings) -> str | None:
    # Claimed before the push so the successor never sees a stale marker
    await asyncio.to_thread(
        media_db.merge_media, message.media_id, {CURRENT_TIER_FIELD: message.tier_name}, settings
    )
    try:
        return await enqueue(message)
    except ChainEnqueueError as e:
        logger.error(f"{e}; chain stalled")
        await recovery.record_failure(
            message.media_id,
            message.tier_name,
            e,
            label=message.tier_config.label,
            settings=settings,
        )
        return None


async def start_chain(
    media_id: str,
    remaining: list[str],
    *,
    ladder: list[TierConfig],
    source_object_path: str,
    storage_folder: str,
    hls_base_path: str,
    token: str,
    original_resolution: dict[str, int | None],
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> TranscodeJobMessage | None:
    """
    Enqueue the first background tier job of an asset.

    Returns the enqueued message, or None when there is nothing to generate
    or the enqueue failed (recorded against the asset).
    """
    settings = settings or get_settings()
    if not remaining:
        return None

    configs = {tier.name: tier.to_dict() for tier in ladder}
    head, *tail = remaining
    message = TranscodeJobMessage(
        media_id=media_id,
        tier_name=head,
        source_object_path=source_object_path,
        hls_base_path=hls_base_path,
        shared_token=token,
        tier_config=tier_config_for(head, configs),
        remaining_tier_names=tail,
        storage_folder=storage_folder,
        original_resolution=original_resolution,
        bucket=bucket_name,
    )

    if await _enqueue_or_record(message, settings) is None:
        return None
    return message


async def continue_chain(
    message: TranscodeJobMessage,
    record: dict[str, Any],
    settings: Settings | None = None,
) -> TranscodeJobMessage | None:
    """
    Enqueue the successor of a finished job, or finish the chain.

    A redelivered job for an asset whose background processing has already
    completed neither re-enqueues nor re-finalizes.
    """
    settings = settings or get_settings()

    if record.get("backgroundProcessingStatus") == BackgroundStatus.COMPLETED.value:
        logger.info(f"Chain for media {message.media_id} already completed; not continuing")
        return None

    successor = next_job(message, record.get("qualityConfigs"))
    if successor is None:
        await readiness.on_chain_finished(message.media_id, settings)
        return None

    if await _enqueue_or_record(successor, settings) is None:
        return None
    return successor


async def _encode_from_source(message: TranscodeJobMessage, settings: Settings) -> str:
    work_dir = Path(tempfile.mkdtemp(prefix=f"chain_{message.tier_name}_"))
    try:
        local = work_dir / (Path(message.source_object_path).name or "source")
        await asyncio.to_thread(
            gcs.download_to_file, message.source_object_path, local, message.bucket, settings
        )
        return await encode_tier(
            local,
            message.tier_config,
            hls_base_path=message.hls_base_path,
            token=message.shared_token,
            settings=settings,
        )
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


async def process_transcode_job(
    message: TranscodeJobMessage,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """
    Run one chained tier job.

    Safe under redelivery: a job whose tier the chain has already moved past
    is dropped, so an asset never has two successors in flight. A tier that
    is encoded again replaces its earlier entry instead of duplicating it.
    A tier failure, including a failed master upload or record write after
    the encode, is recorded and the chain still moves on to the next tier.
    """
    settings = settings or get_settings()
    media_id = message.media_id
    tier = message.tier_config
    skipped = {"mediaId": media_id, "quality": tier.name, "status": "skipped", "next": None}

    record = await asyncio.to_thread(media_db.get_media, media_id, settings)
    if record is None:
        logger.warning(f"Media {media_id} no longer exists; dropping {tier.name} job")
        return skipped

    if record.get("transcodeStatus") != TranscodeStatus.READY.value:
        logger.warning(
            f"Media {media_id} is {record.get('transcodeStatus')}; dropping {tier.name} job"
        )
        return skipped

    current = record.get(CURRENT_TIER_FIELD)
    if current and current != tier.name:
        logger.info(f"Chain for media {media_id} is at {current}; dropping duplicate {tier.name} job")
        return skipped

    status = "completed"
    try:
        storage_path = await _encode_from_source(message, settings)
        await readiness.on_tier_completed(
            media_id,
            TierResult.for_tier(tier, storage_path),
            hls_base_path=message.hls_base_path,
            token=message.shared_token,
            settings=settings,
        )
    except Exception as e:
        logger.exception(f"Background {tier.name} tier failed for media {media_id}: {e}")
        await readiness.on_tier_failed(media_id, tier, e, settings)
        status = "failed"

    successor = await continue_chain(message, record, settings)
    return {
        "mediaId": media_id,
        "quality": tier.name,
        "status": status,
        "next": successor.tier_name if successor else None,
    }
