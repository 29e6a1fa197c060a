"""Firestore operations for media metadata records."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud import firestore as gc_firestore

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

_app: firebase_admin.App | None = None


def _get_credentials(settings: Settings):
    """Get Firebase credentials from service account key."""
    key_path = settings.firebase_service_account_key or settings.google_service_account_key
    if not key_path:
        return None

    path = Path(key_path).expanduser()
    if path.exists():
        return credentials.Certificate(str(path))

    # Try parsing as JSON
    try:
        key_data = json.loads(key_path)
        return credentials.Certificate(key_data)
    except json.JSONDecodeError:
        raise ValueError(f"Invalid service account key: {key_path}")


def _initialize_firebase(settings: Settings) -> firebase_admin.App:
    """Initialize Firebase Admin SDK."""
    global _app
    if _app is not None:
        return _app

    if firebase_admin._apps:
        _app = firebase_admin.get_app()
        return _app

    cred = _get_credentials(settings)
    options = {"projectId": settings.google_project_id}
    if cred:
        _app = firebase_admin.initialize_app(cred, options)
    else:
        _app = firebase_admin.initialize_app(options=options)

    return _app


def get_firestore_client(settings: Settings | None = None):
    """Get a Firestore client."""
    settings = settings or get_settings()
    _initialize_firebase(settings)
    return firestore.client()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _media_collection(settings: Settings):
    return get_firestore_client(settings).collection(settings.media_collection)


# Media document structure:
# media/{mediaId}
# {
#   filePath: string                      source object path
#   storageFolder: string                 folder of the source, trailing slash
#   type: "image" | "video"
#   transcodeStatus: "processing" | "ready" | "failed"
#   qualityLevels: TierResult[]
#   backgroundProcessingStatus: "none" | "processing" | "completed"
#   backgroundProcessingTargetQualities: string[]
#   backgroundProcessingCurrentQuality: string   tier of the job in flight
#   failedQualities: {name, label, error, failedAt}[]
#   sharedToken: string
#   qualityConfigs: {[tierName]: TierConfig}
#   sources: {hls, hlsMaster}
#   hlsBasePath, thumbnailPath, duration, dimensions{width,height}
# }


def get_media(media_id: str, settings: Settings | None = None) -> dict[str, Any] | None:
    """Get a media record by ID."""
    settings = settings or get_settings()
    doc = _media_collection(settings).document(media_id).get()
    if not doc.exists:
        return None

    data = doc.to_dict()
    data["id"] = doc.id
    return data


def merge_media(
    media_id: str,
    updates: dict[str, Any],
    settings: Settings | None = None,
) -> None:
    """
    Partially update a media record.

    Always a merge write: fields not named in updates are left alone so
    concurrent writers (chained workers, thumbnail writers) are not clobbered.
    """
    settings = settings or get_settings()
    payload = {**updates, "transcodeUpdatedAt": _now()}
    _media_collection(settings).document(media_id).set(payload, merge=True)
    logger.info(f"Updated media {media_id}: {sorted(updates.keys())}")


def append_failed_quality(
    media_id: str,
    entry: dict[str, Any],
    settings: Settings | None = None,
) -> None:
    """Append an entry to the failedQualities log."""
    settings = settings or get_settings()
    _media_collection(settings).document(media_id).set(
        {
            "failedQualities": gc_firestore.ArrayUnion([entry]),
            "transcodeUpdatedAt": _now(),
        },
        merge=True,
    )


def find_media_by_field(
    field: str,
    value: Any,
    settings: Settings | None = None,
) -> dict[str, Any] | None:
    """Return the first media record whose field equals value."""
    settings = settings or get_settings()
    docs = list(_media_collection(settings).where(field, "==", value).limit(1).stream())
    if not docs:
        return None

    data = docs[0].to_dict()
    data["id"] = docs[0].id
    return data


def list_recent_media(limit: int, settings: Settings | None = None) -> list[dict[str, Any]]:
    """List the most recently created media records."""
    settings = settings or get_settings()
    query = _media_collection(settings).order_by(
        "createdAt", direction=gc_firestore.Query.DESCENDING
    ).limit(limit)

    records = []
    for doc in query.stream():
        data = doc.to_dict()
        data["id"] = doc.id
        records.append(data)
    return records


def list_processing_videos(settings: Settings | None = None) -> list[dict[str, Any]]:
    """List video records whose transcodeStatus is still processing."""
    settings = settings or get_settings()
    query = (
        _media_collection(settings)
        .where("transcodeStatus", "==", "processing")
        .where("type", "==", "video")
    )

    records = []
    for doc in query.stream():
        data = doc.to_dict()
        data["id"] = doc.id
        records.append(data)
    return records


def save_manual_fix(
    fix_id: str,
    data: dict[str, Any],
    settings: Settings | None = None,
) -> None:
    """Create or merge a manual fix tracking record."""
    settings = settings or get_settings()
    db = get_firestore_client(settings)
    db.collection(settings.manual_fix_collection).document(fix_id).set(data, merge=True)
