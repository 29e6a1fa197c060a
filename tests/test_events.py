"""Tests for transcode event publishing and the storage event subscriber."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from transcode_service.events import StorageEventSubscriber
from transcode_service.pubsub import publish_transcode_event


class TestPublishTranscodeEvent:
    """Test suite for publish_transcode_event."""

    @patch("transcode_service.pubsub._get_publisher")
    def test_publishes_payload(self, mock_get_publisher, mock_publisher):
        """Should publish a JSON event to the transcode topic."""
        mock_get_publisher.return_value = mock_publisher

        publish_transcode_event("transcode.ready", "m1", quality="720p", status="ready")

        topic, data = mock_publisher.publish.call_args.args
        payload = json.loads(data)
        assert topic == "projects/test-project/topics/media-transcode-events"
        assert payload["type"] == "transcode.ready"
        assert payload["mediaId"] == "m1"
        assert payload["quality"] == "720p"

    @patch("transcode_service.pubsub._get_publisher")
    def test_publish_errors_do_not_raise(self, mock_get_publisher, mock_publisher):
        """Should log and continue when Pub/Sub is unavailable."""
        mock_publisher.publish.side_effect = RuntimeError("unavailable")
        mock_get_publisher.return_value = mock_publisher

        publish_transcode_event("transcode.failed", "m1")


def pubsub_message(payload, attributes=None):
    message = MagicMock()
    message.data = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    message.attributes = attributes or {}
    return message


class TestStorageEventSubscriber:
    """Test suite for StorageEventSubscriber message handling."""

    @pytest.mark.asyncio
    @patch("transcode_service.events.handle_object_finalized", new_callable=AsyncMock)
    async def test_dispatches_and_acks(self, mock_handle, test_settings):
        """Should run ingestion for a finalize event and ack."""
        mock_handle.return_value = {"status": "ready"}
        message = pubsub_message({"bucket": "b", "name": "media/x.mp4"}, {"eventType": "OBJECT_FINALIZE"})

        await StorageEventSubscriber(test_settings)._handle_message(message)

        mock_handle.assert_awaited_once_with({"bucket": "b", "name": "media/x.mp4"}, test_settings)
        message.ack.assert_called_once()

    @pytest.mark.asyncio
    @patch("transcode_service.events.handle_object_finalized", new_callable=AsyncMock)
    async def test_ignores_other_event_types(self, mock_handle, test_settings):
        """Should ack and skip delete notifications."""
        message = pubsub_message({"name": "media/x.mp4"}, {"eventType": "OBJECT_DELETE"})

        await StorageEventSubscriber(test_settings)._handle_message(message)

        mock_handle.assert_not_called()
        message.ack.assert_called_once()

    @pytest.mark.asyncio
    @patch("transcode_service.events.handle_object_finalized", new_callable=AsyncMock)
    async def test_malformed_payload(self, mock_handle, test_settings):
        """Should ack and drop unparseable payloads."""
        message = pubsub_message(b"not json")

        await StorageEventSubscriber(test_settings)._handle_message(message)

        mock_handle.assert_not_called()
        message.ack.assert_called_once()

    @pytest.mark.asyncio
    @patch("transcode_service.events.handle_object_finalized", new_callable=AsyncMock)
    async def test_handler_errors_are_acked(self, mock_handle, test_settings):
        """Should ack even when ingestion raises."""
        mock_handle.side_effect = RuntimeError("boom")
        message = pubsub_message({"name": "media/x.mp4"})

        await StorageEventSubscriber(test_settings)._handle_message(message)

        message.ack.assert_called_once()

    @pytest.mark.asyncio
    async def test_disabled_without_subscription(self, test_settings):
        """Should not create a client when no subscription is configured."""
        with patch("transcode_service.events.pubsub_v1.SubscriberClient") as mock_client:
            await StorageEventSubscriber(test_settings).start()

        mock_client.assert_not_called()
