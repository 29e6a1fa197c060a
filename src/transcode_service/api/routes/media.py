"""Media status endpoint."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...config import get_settings
from ...storage import firestore as media_db

router = APIRouter()


class MediaStatusResponse(BaseModel):
    """Transcode view of a media record."""

    id: str
    transcodeStatus: str | None = None
    backgroundProcessingStatus: str | None = None
    backgroundProcessingTargetQualities: list[str] = []
    qualityLevels: list[dict[str, Any]] = []
    failedQualities: list[dict[str, Any]] = []
    sources: dict[str, Any] = {}
    transcodeFailureReason: str | None = None
    thumbnailPath: str | None = None


@router.get("/{media_id}", response_model=MediaStatusResponse)
async def get_media_status(media_id: str):
    """Get the transcode state of a media record."""
    settings = get_settings()
    record = await asyncio.to_thread(media_db.get_media, media_id, settings)
    if record is None:
        raise HTTPException(status_code=404, detail="Media not found")

    return MediaStatusResponse(
        id=record["id"],
        transcodeStatus=record.get("transcodeStatus"),
        backgroundProcessingStatus=record.get("backgroundProcessingStatus"),
        backgroundProcessingTargetQualities=record.get("backgroundProcessingTargetQualities") or [],
        qualityLevels=record.get("qualityLevels") or [],
        failedQualities=record.get("failedQualities") or [],
        sources=record.get("sources") or {},
        transcodeFailureReason=record.get("transcodeFailureReason"),
        thumbnailPath=record.get("thumbnailPath"),
    )
