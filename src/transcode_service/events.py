"""Storage object-finalized notifications delivered through Pub/Sub."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Optional

from google.api_core.exceptions import NotFound
from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.message import Message

from .config import Settings
from .media.ingest import handle_object_finalized

logger = logging.getLogger(__name__)


def decode_storage_event(body: dict[str, Any]) -> dict[str, Any]:
    """
    Extract the object payload from a request body.

    Accepts the raw storage object resource or a Pub/Sub push envelope
    ({"message": {"data": base64(json)}}).

    Raises:
        ValueError: The envelope data is not valid base64 JSON
    """
    message = body.get("message")
    if not isinstance(message, dict):
        return body

    data = message.get("data")
    if not data:
        return message.get("attributes") or {}

    try:
        return json.loads(base64.b64decode(data).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid Pub/Sub message data: {e}") from e


class StorageEventSubscriber:
    """Pulls object-finalized notifications and runs ingestion for each."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._subscriber: Optional[pubsub_v1.SubscriberClient] = None
        self._streaming_future: Optional[pubsub_v1.subscriber.futures.StreamingPullFuture] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self) -> None:
        """Start listening for storage events."""
        if self._streaming_future and not self._streaming_future.done():
            return

        subscription_name = self._settings.storage_event_subscription
        project_id = self._settings.google_project_id
        if not subscription_name:
            logger.info("[STORAGE_EVENTS] No subscription configured; pull consumer disabled")
            return

        self._subscriber = pubsub_v1.SubscriberClient()
        subscription_path = self._subscriber.subscription_path(project_id, subscription_name)
        self._loop = asyncio.get_running_loop()

        def callback(message: Message) -> None:
            assert self._loop is not None
            asyncio.run_coroutine_threadsafe(self._handle_message(message), self._loop)

        try:
            self._streaming_future = self._subscriber.subscribe(subscription_path, callback)
        except NotFound:
            logger.error(
                "[STORAGE_EVENTS] Subscription '%s' not found in project '%s'.",
                subscription_name,
                project_id,
            )
            await self._cleanup()
            return

        logger.info("[STORAGE_EVENTS] Subscribed to %s", subscription_path)

    async def stop(self) -> None:
        """Stop listening for storage events."""
        if self._streaming_future:
            self._streaming_future.cancel()
            try:
                self._streaming_future.result(timeout=5)
            except Exception:
                pass
            self._streaming_future = None
        await self._cleanup()

    async def _cleanup(self) -> None:
        if self._subscriber:
            await asyncio.to_thread(self._subscriber.close)
            self._subscriber = None

    async def _handle_message(self, message: Message) -> None:
        """Handle one notification. Messages are always acked; redelivery would re-encode."""
        try:
            event = json.loads(message.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("[STORAGE_EVENTS] Discarded malformed storage event payload")
            message.ack()
            return

        if message.attributes and message.attributes.get("eventType") not in (None, "OBJECT_FINALIZE"):
            logger.debug("[STORAGE_EVENTS] Ignoring %s event", message.attributes.get("eventType"))
            message.ack()
            return

        try:
            result = await handle_object_finalized(event, self._settings)
            logger.info("[STORAGE_EVENTS] %s: %s", event.get("name"), result.get("status"))
        except Exception:
            logger.exception("[STORAGE_EVENTS] Failed to process storage event; acking to avoid retry.")
        finally:
            message.ack()
