"""Pub/Sub event publishing for transcode progress."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from google.cloud import pubsub_v1

from .config import get_settings

logger = logging.getLogger(__name__)

_publisher: pubsub_v1.PublisherClient | None = None


def _get_publisher() -> pubsub_v1.PublisherClient:
    """Get or create the publisher client."""
    global _publisher
    if _publisher is None:
        _publisher = pubsub_v1.PublisherClient()
    return _publisher


def publish_transcode_event(
    event_type: str,
    media_id: str,
    quality: str | None = None,
    status: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """
    Publish a transcode event to Pub/Sub.

    Args:
        event_type: Event type (e.g., "transcode.ready", "transcode.failed")
        media_id: Media record ID
        quality: Tier the event refers to (optional)
        status: transcodeStatus after the event (optional)
        metadata: Additional metadata (optional)
    """
    settings = get_settings()
    topic_path = f"projects/{settings.google_project_id}/topics/{settings.transcode_event_topic}"

    payload = {
        "type": event_type,
        "mediaId": media_id,
        "quality": quality,
        "status": status,
        "metadata": metadata or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        publisher = _get_publisher()
        data = json.dumps(payload).encode("utf-8")
        future = publisher.publish(topic_path, data)
        message_id = future.result(timeout=10)
        logger.info(
            "[TRANSCODE_PUBSUB] Published %s event for media %s (message_id=%s)",
            event_type,
            media_id,
            message_id,
        )
    except Exception as e:
        # Notification only; the media record is the source of truth
        logger.warning(
            "[TRANSCODE_PUBSUB] Failed to publish %s event for media %s: %s",
            event_type,
            media_id,
            e,
        )
