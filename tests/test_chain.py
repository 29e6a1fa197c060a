"""Tests for the tier job chain."""

import pytest
from unittest.mock import AsyncMock, patch

from transcode_service.errors import ChainEnqueueError
from transcode_service.ladder import get_tier
from transcode_service.media.types import TranscodeJobMessage
from transcode_service.tasks.chain import continue_chain, enqueue, next_job, process_transcode_job, tier_config_for


def message(tier="1080p", remaining=None):
    return TranscodeJobMessage(
        media_id="m1",
        tier_name=tier,
        source_object_path="media/u1/abc/clip.mp4",
        hls_base_path="media/u1/abc/hls/clip/",
        shared_token="tok",
        tier_config=get_tier(tier),
        remaining_tier_names=list(remaining or []),
        storage_folder="media/u1/abc/",
        original_resolution={"width": 3840, "height": 2160},
        bucket="test-bucket",
    )


class TestTierConfigFor:
    """Test suite for tier_config_for."""

    def test_prefers_persisted_config(self):
        """Should rebuild parameters from the record's qualityConfigs."""
        stored = {**get_tier("2160p").to_dict(), "crf": 18}
        assert tier_config_for("2160p", {"2160p": stored}).crf == 18

    def test_falls_back_to_table(self):
        """Should use the static table when nothing is persisted."""
        assert tier_config_for("2160p", None) == get_tier("2160p")


class TestNextJob:
    """Test suite for next_job."""

    def test_head_and_tail(self):
        """Should target the head of the remaining list and carry the tail."""
        successor = next_job(message("1080p", ["2160p"]))

        assert successor.tier_name == "2160p"
        assert successor.remaining_tier_names == []
        assert successor.shared_token == "tok"
        assert successor.hls_base_path == "media/u1/abc/hls/clip/"
        assert successor.tier_config == get_tier("2160p")

    def test_exhausted(self):
        """Should return None when nothing remains."""
        assert next_job(message("2160p", [])) is None

    def test_payload_round_trip(self):
        """Should survive the queue payload unchanged in meaning."""
        successor = next_job(message("720p", ["1080p", "2160p"]))
        payload = successor.to_payload()

        assert payload["qualityLevel"] == "1080p"
        assert payload["remainingQualities"] == ["2160p"]
        assert payload["qualityConfig"]["scaleFilter"] == get_tier("1080p").scale_filter
        assert TranscodeJobMessage.from_payload(payload) == successor


class TestEnqueue:
    """Test suite for enqueue."""

    @pytest.mark.asyncio
    async def test_wraps_queue_errors(self, task_queue):
        """Should raise ChainEnqueueError when the queue fails."""
        task_queue.fail = True

        with pytest.raises(ChainEnqueueError, match="1080p"):
            await enqueue(message())

    @pytest.mark.asyncio
    async def test_returns_task_id(self, task_queue):
        """Should return the queue's task ID."""
        assert await enqueue(message()) == "task-1"
        assert task_queue.messages[0].tier_name == "1080p"


class TestContinueChain:
    """Test suite for continue_chain."""

    @pytest.mark.asyncio
    async def test_enqueues_exactly_one_successor(self, task_queue, media_store, published):
        """Should enqueue one job for the next tier."""
        record = {"backgroundProcessingStatus": "processing"}

        successor = await continue_chain(message("720p", ["1080p", "2160p"]), record)

        assert successor.tier_name == "1080p"
        assert [m.tier_name for m in task_queue.messages] == ["1080p"]

    @pytest.mark.asyncio
    async def test_finishes_chain_once(self, task_queue, media_store, published):
        """Should complete background processing at the end and not again."""
        media_store.add("m1", backgroundProcessingStatus="processing")

        await continue_chain(message("2160p"), media_store.get_media("m1"))
        await continue_chain(message("2160p"), media_store.get_media("m1"))

        assert media_store.records["m1"]["backgroundProcessingStatus"] == "completed"
        events = [call.args[0] for call in published.call_args_list]
        assert events.count("transcode.background_completed") == 1

    @pytest.mark.asyncio
    async def test_stall_is_recorded(self, task_queue, media_store, published):
        """Should record an enqueue failure against the next tier."""
        media_store.add("m1", transcodeStatus="ready", backgroundProcessingStatus="processing")
        task_queue.fail = True

        successor = await continue_chain(message("1080p", ["2160p"]), media_store.get_media("m1"))

        assert successor is None
        failure = media_store.records["m1"]["failedQualities"][0]
        assert failure["name"] == "2160p"
        assert failure["label"] == "4K"
        assert media_store.records["m1"]["transcodeStatus"] == "ready"


class TestProcessTranscodeJob:
    """Test suite for process_transcode_job."""

    @pytest.mark.asyncio
    async def test_missing_media(self, media_store):
        """Should skip a job whose media record is gone."""
        with patch("transcode_service.tasks.chain.encode_tier", new_callable=AsyncMock) as mock_encode:
            result = await process_transcode_job(message())

        assert result["status"] == "skipped"
        mock_encode.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_media(self, media_store):
        """Should skip background tiers for a failed asset."""
        media_store.add("m1", transcodeStatus="failed")

        with patch("transcode_service.tasks.chain.encode_tier", new_callable=AsyncMock) as mock_encode:
            result = await process_transcode_job(message())

        assert result["status"] == "skipped"
        mock_encode.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_failure_is_tier_failure(self, media_store, bucket, task_queue, published):
        """Should record a failed source download and continue the chain."""
        media_store.add("m1", transcodeStatus="ready", backgroundProcessingStatus="processing")

        with patch("transcode_service.storage.gcs.download_to_file", side_effect=OSError("disk full")):
            result = await process_transcode_job(message("1080p", ["2160p"]))

        assert result["status"] == "failed"
        assert result["next"] == "2160p"
        assert media_store.records["m1"]["failedQualities"][0]["name"] == "1080p"
