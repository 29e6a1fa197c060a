"""Media record and job message type definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..ladder import TierConfig


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or Firestore timestamp into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class TranscodeStatus(str, Enum):
    """Playability of an asset."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class BackgroundStatus(str, Enum):
    """Progress of the tiers generated after the mandatory one."""

    NONE = "none"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass
class TierResult:
    """A completed tier as stored in qualityLevels."""

    name: str
    label: str
    resolution: str
    bandwidth: int
    storage_path: str
    completed_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TierResult:
        """Create from dictionary."""
        completed_at = data.get("completedAt", data.get("completed_at", ""))
        if isinstance(completed_at, datetime):
            completed_at = completed_at.isoformat()
        return cls(
            name=data["name"],
            label=data.get("label", data["name"]),
            resolution=data.get("resolution", ""),
            bandwidth=int(data.get("bandwidth", 0)),
            storage_path=data.get("storagePath", data.get("storage_path", "")),
            completed_at=completed_at or "",
        )

    @classmethod
    def for_tier(cls, tier: TierConfig, storage_path: str) -> TierResult:
        return cls(
            name=tier.name,
            label=tier.label,
            resolution=tier.resolution,
            bandwidth=tier.bandwidth,
            storage_path=storage_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (camelCase for Firestore compatibility)."""
        return {
            "name": self.name,
            "label": self.label,
            "resolution": self.resolution,
            "bandwidth": self.bandwidth,
            "storagePath": self.storage_path,
            "completedAt": self.completed_at,
        }


@dataclass
class TranscodeJobMessage:
    """
    One queued tier job.

    A complete snapshot: the worker that receives it may run in a different
    process from the one that enqueued it and needs nothing else to encode
    the tier and continue the chain.
    """

    media_id: str
    tier_name: str
    source_object_path: str
    hls_base_path: str
    shared_token: str
    tier_config: TierConfig
    remaining_tier_names: list[str] = field(default_factory=list)
    storage_folder: str = ""
    original_resolution: dict[str, int | None] = field(default_factory=dict)
    bucket: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> TranscodeJobMessage:
        """Create from the queue payload."""
        tier_name = data["qualityLevel"]
        config = data.get("qualityConfig") or {"name": tier_name}
        return cls(
            media_id=data["mediaId"],
            tier_name=tier_name,
            source_object_path=data["filePath"],
            hls_base_path=data["hlsBasePath"],
            shared_token=data["sharedToken"],
            tier_config=TierConfig.from_dict({"name": tier_name, **config}),
            remaining_tier_names=list(data.get("remainingQualities") or []),
            storage_folder=data.get("storageFolder", ""),
            original_resolution=dict(data.get("originalResolution") or {}),
            bucket=data.get("bucket"),
        )

    def to_payload(self) -> dict[str, Any]:
        """Convert to the queue payload (camelCase)."""
        payload = {
            "mediaId": self.media_id,
            "qualityLevel": self.tier_name,
            "filePath": self.source_object_path,
            "storageFolder": self.storage_folder,
            "hlsBasePath": self.hls_base_path,
            "sharedToken": self.shared_token,
            "originalResolution": self.original_resolution,
            "remainingQualities": list(self.remaining_tier_names),
            "qualityConfig": self.tier_config.to_dict(),
        }
        if self.bucket:
            payload["bucket"] = self.bucket
        return payload


def tier_manifest_path(hls_base_path: str, tier_name: str) -> str:
    """Storage path of a tier's manifest."""
    return f"{tier_base_path(hls_base_path, tier_name)}index.m3u8"


def tier_base_path(hls_base_path: str, tier_name: str) -> str:
    """Storage folder holding one tier's manifest and segments."""
    return f"{hls_base_path.rstrip('/')}/{tier_name}/"


def master_playlist_path(hls_base_path: str) -> str:
    """Storage path of the master playlist."""
    return f"{hls_base_path.rstrip('/')}/master.m3u8"
