"""Task queue push endpoint for chained tier jobs."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...media.types import TranscodeJobMessage
from ...tasks.chain import process_transcode_job

logger = logging.getLogger(__name__)

router = APIRouter()


class TranscodeTaskRequest(BaseModel):
    """Request model for a pushed tier job."""

    mediaId: str
    qualityLevel: str
    filePath: str
    storageFolder: str = ""
    hlsBasePath: str
    sharedToken: str
    originalResolution: dict[str, int | None] = {}
    remainingQualities: list[str] = []
    qualityConfig: dict[str, Any] | None = None
    bucket: str | None = None


class TranscodeTaskResponse(BaseModel):
    """Response model for a processed tier job."""

    mediaId: str
    quality: str
    status: str
    next: str | None = None


@router.post("/transcode", response_model=TranscodeTaskResponse)
async def run_transcode_task(body: TranscodeTaskRequest):
    """
    Encode one tier and continue the chain.

    Tier failures are recorded on the asset and answered with 200; only
    unexpected errors return 5xx and get redelivered.
    """
    try:
        message = TranscodeJobMessage.from_payload(body.model_dump(exclude_none=True))
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid tier configuration: {e}")

    result = await process_transcode_job(message)
    return TranscodeTaskResponse(**result)
