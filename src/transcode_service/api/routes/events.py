"""Storage event push endpoint."""

from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from ...config import get_settings
from ...events import decode_storage_event
from ...media.ingest import handle_object_finalized

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/storage")
async def receive_storage_event(request: Request, token: str | None = Query(default=None)) -> dict[str, Any]:
    """
    Handle an object-finalized notification.

    Handled outcomes (skipped, unresolved, failed) return 200 so the
    notification is not redelivered.
    """
    settings = get_settings()
    expected = settings.push_verification_token
    if expected and not hmac.compare_digest(token or "", expected):
        raise HTTPException(status_code=401, detail="Invalid push token")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    try:
        event = decode_storage_event(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = await handle_object_finalized(event, settings)
    logger.info(f"Storage event for {event.get('name')}: {result['status']}")
    return result
