"""Locate the media record for a newly finalized storage object."""

from __future__ import annotations

import asyncio
import logging
import posixpath
from typing import Any

from ..config import Settings, get_settings
from ..retry import retry_async
from ..storage import firestore as media_db

logger = logging.getLogger(__name__)


class _RecordNotVisible(Exception):
    """The record is not (yet) visible; raised to drive another attempt."""


def object_folder(object_name: str) -> str:
    """Folder of a storage object with a trailing slash."""
    folder = posixpath.dirname(object_name)
    return f"{folder}/" if folder else ""


async def _lookup(object_name: str, object_dir: str, settings: Settings) -> dict[str, Any] | None:
    record = await asyncio.to_thread(media_db.find_media_by_field, "filePath", object_name, settings)
    if record:
        return record

    if object_dir:
        folder = object_dir if object_dir.endswith("/") else f"{object_dir}/"
        return await asyncio.to_thread(media_db.find_media_by_field, "storageFolder", folder, settings)
    return None


def _matches(record: dict[str, Any], object_name: str, object_dir: str) -> bool:
    file_name = posixpath.basename(object_name)
    folder = (record.get("storageFolder") or "").rstrip("/")
    file_path = record.get("filePath") or ""

    # Whole path segments only: media/u1/b1 must not claim media/u1/b10
    if folder and object_dir and folder == object_dir.rstrip("/"):
        return True
    return bool(file_name) and posixpath.basename(file_path) == file_name


async def _fallback_scan(object_name: str, object_dir: str, settings: Settings) -> dict[str, Any] | None:
    recent = await asyncio.to_thread(
        media_db.list_recent_media, settings.resolve_fallback_scan_limit, settings
    )
    for record in recent:
        if _matches(record, object_name, object_dir):
            logger.info(f"Fallback scan matched {object_name} to media {record['id']}")
            return record
    return None


async def resolve_media(
    object_name: str,
    object_dir: str | None = None,
    settings: Settings | None = None,
) -> dict[str, Any] | None:
    """
    Find the media record of a storage object.

    The upload flow writes the object before its record commit is visible,
    so lookups by filePath then storageFolder are retried with exponential
    backoff. Once attempts run out the most recent records are scanned for
    a folder or filename match.

    Returns:
        The record (with "id"), or None when nothing matches. A miss is
        terminal for the triggering event.
    """
    settings = settings or get_settings()
    object_dir = object_folder(object_name) if object_dir is None else object_dir

    async def attempt() -> dict[str, Any]:
        record = await _lookup(object_name, object_dir, settings)
        if record is None:
            raise _RecordNotVisible(object_name)
        return record

    try:
        return await retry_async(
            attempt,
            max_attempts=settings.resolve_max_attempts,
            base_delay=settings.resolve_base_delay_seconds,
            max_delay=settings.resolve_max_delay_seconds,
            is_retryable=lambda e: isinstance(e, _RecordNotVisible),
            label=f"Media lookup for {object_name}",
        )
    except _RecordNotVisible:
        logger.warning(
            f"No media record for {object_name} after {settings.resolve_max_attempts} attempts; scanning recent records"
        )

    record = await _fallback_scan(object_name, object_dir, settings)
    if record is None:
        logger.error(f"Could not resolve media record for {object_name}; dropping event")
    return record
