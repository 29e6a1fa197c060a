"""Operator maintenance endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from ...media.recovery import run_manual_fix

router = APIRouter()


class ResetStuckRequest(BaseModel):
    """Request model for a stuck-processing reset."""

    fixId: str | None = None


class ManualFixResponse(BaseModel):
    """Response model for a completed manual fix."""

    id: str
    type: str
    status: str
    processedCount: int
    completedAt: str


@router.post("/reset-stuck", response_model=ManualFixResponse)
async def reset_stuck_processing(body: ResetStuckRequest | None = None):
    """Correct assets stuck in processing."""
    return ManualFixResponse(**await run_manual_fix(body.fixId if body else None))
