"""Tests for the tier encoder."""

import subprocess
from pathlib import Path

import pytest
from unittest.mock import MagicMock, patch

from transcode_service.errors import EncoderError, TranscodeTimeoutError
from transcode_service.ladder import get_tier
from transcode_service.storage.gcs import IMMUTABLE_CACHE_CONTROL
from transcode_service.transcode.encoder import build_ffmpeg_command, encode_tier, run_encoder

HLS = "media/u1/clip/hls/clip/"


def arg_after(cmd, flag):
    return cmd[cmd.index(flag) + 1]


def fake_ffmpeg(cmd, tier, timeout_seconds):
    """Write the files ffmpeg would produce for a two-segment clip."""
    manifest = Path(cmd[-1])
    out = manifest.parent
    (out / "seg_000.ts").write_bytes(b"\x47" * 188)
    (out / "seg_001.ts").write_bytes(b"\x47" * 188)
    manifest.write_text(
        "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:4\n"
        "#EXTINF:4.0,\nseg_000.ts\n#EXTINF:1.5,\nseg_001.ts\n#EXT-X-ENDLIST\n"
    )


class TestBuildFfmpegCommand:
    """Test suite for build_ffmpeg_command."""

    def test_baseline_arguments(self, tmp_path):
        """Should encode 720p with its profile and a bounded playlist."""
        tier = get_tier("720p")
        cmd = build_ffmpeg_command("/tmp/in.mp4", tmp_path, tier)

        assert cmd[0] == "ffmpeg"
        assert arg_after(cmd, "-i") == "/tmp/in.mp4"
        assert arg_after(cmd, "-vf") == tier.scale_filter
        assert arg_after(cmd, "-c:v") == "libx264"
        assert arg_after(cmd, "-preset") == "veryfast"
        assert arg_after(cmd, "-crf") == "23"
        assert arg_after(cmd, "-hls_list_size") == "10"
        assert cmd[-1] == str(tmp_path / "index.m3u8")

    def test_segment_parameters(self, tmp_path):
        """Should produce 4-second independent segments numbered from zero."""
        cmd = build_ffmpeg_command("in.mp4", tmp_path, get_tier("1080p"))

        assert arg_after(cmd, "-hls_time") == "4"
        assert arg_after(cmd, "-hls_flags") == "independent_segments"
        assert arg_after(cmd, "-start_number") == "0"
        assert arg_after(cmd, "-hls_segment_filename") == str(tmp_path / "seg_%03d.ts")
        assert arg_after(cmd, "-hls_list_size") == "0"

    def test_fixed_audio(self, tmp_path):
        """Should re-encode audio to stereo 48 kHz AAC at 128k."""
        cmd = build_ffmpeg_command("in.mp4", tmp_path, get_tier("2160p"))

        assert arg_after(cmd, "-c:a") == "aac"
        assert arg_after(cmd, "-b:a") == "128k"
        assert arg_after(cmd, "-ar") == "48000"
        assert arg_after(cmd, "-ac") == "2"

    def test_custom_binary(self, tmp_path):
        """Should use the configured ffmpeg path."""
        cmd = build_ffmpeg_command("in.mp4", tmp_path, get_tier("720p"), "/opt/ffmpeg")
        assert cmd[0] == "/opt/ffmpeg"


class TestRunEncoder:
    """Test suite for run_encoder."""

    @patch("transcode_service.transcode.encoder.subprocess.run")
    def test_timeout_is_distinct(self, mock_run):
        """Should raise TranscodeTimeoutError when the deadline passes."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="ffmpeg", timeout=300)

        with pytest.raises(TranscodeTimeoutError) as exc_info:
            run_encoder(["ffmpeg"], get_tier("720p"), 300)

        assert exc_info.value.tier_name == "720p"
        assert "timed out after 300s" in str(exc_info.value)
        assert mock_run.call_args.kwargs["timeout"] == 300

    @patch("transcode_service.transcode.encoder.subprocess.run")
    def test_nonzero_exit(self, mock_run):
        """Should raise EncoderError carrying stderr on failure."""
        mock_run.return_value = MagicMock(returncode=1, stderr="Invalid data found")

        with pytest.raises(EncoderError) as exc_info:
            run_encoder(["ffmpeg"], get_tier("1080p"), 600)

        assert not isinstance(exc_info.value, TranscodeTimeoutError)
        assert exc_info.value.stderr == "Invalid data found"

    @patch("transcode_service.transcode.encoder.subprocess.run")
    def test_missing_binary(self, mock_run):
        """Should raise EncoderError when ffmpeg is not installed."""
        mock_run.side_effect = FileNotFoundError("ffmpeg")

        with pytest.raises(EncoderError, match="not found"):
            run_encoder(["ffmpeg"], get_tier("720p"), 300)


class TestEncodeTier:
    """Test suite for encode_tier."""

    @pytest.mark.asyncio
    @patch("transcode_service.transcode.encoder.run_encoder", side_effect=fake_ffmpeg)
    async def test_uploads_rewritten_outputs(self, mock_run, bucket, test_settings, tmp_path):
        """Should upload segments and a token-bound manifest and return its path."""
        source = tmp_path / "clip.mp4"
        source.write_bytes(b"source")

        path = await encode_tier(
            source, get_tier("720p"), hls_base_path=HLS, token="tok", settings=test_settings
        )

        assert path == f"{HLS}720p/index.m3u8"
        assert bucket.names_under(f"{HLS}720p/") == [
            f"{HLS}720p/index.m3u8",
            f"{HLS}720p/seg_000.ts",
            f"{HLS}720p/seg_001.ts",
        ]
        manifest = bucket.text(path)
        assert "seg_000.ts?alt=media&token=tok" in manifest
        assert "\nseg_000.ts\n" not in manifest
        assert all(obj["token"] == "tok" for obj in bucket.objects.values())

    @pytest.mark.asyncio
    @patch("transcode_service.transcode.encoder.run_encoder", side_effect=fake_ffmpeg)
    async def test_manifest_uploaded_last(self, mock_run, bucket, test_settings, tmp_path):
        """Should upload the manifest after every segment."""
        order = []
        original = bucket.upload_file

        def recording_upload(local_path, destination, **kwargs):
            order.append(destination)
            return original(local_path, destination, **kwargs)

        with patch("transcode_service.storage.gcs.upload_file", side_effect=recording_upload):
            await encode_tier(
                tmp_path / "clip.mp4", get_tier("720p"), hls_base_path=HLS, token="tok", settings=test_settings
            )

        assert order[-1].endswith("index.m3u8")
        assert len(order) == 3

    @pytest.mark.asyncio
    @patch("transcode_service.transcode.encoder.run_encoder", side_effect=fake_ffmpeg)
    async def test_immutable_cache_headers(self, mock_run, test_settings, tmp_path):
        """Should upload with immutable cache control by default."""
        with patch("transcode_service.storage.gcs._bucket") as mock_bucket:
            blob = mock_bucket.return_value.blob.return_value
            await encode_tier(
                tmp_path / "clip.mp4", get_tier("720p"), hls_base_path=HLS, token="tok", settings=test_settings
            )

        assert blob.cache_control == IMMUTABLE_CACHE_CONTROL
        assert blob.metadata == {"firebaseStorageDownloadTokens": "tok"}
        content_types = {call.kwargs["content_type"] for call in blob.upload_from_filename.call_args_list}
        assert content_types == {"video/mp2t", "application/vnd.apple.mpegurl"}

    @pytest.mark.asyncio
    async def test_timeout_propagates_and_cleans_up(self, bucket, test_settings, tmp_path):
        """Should surface the timeout, upload nothing and remove the work dir."""
        work_dirs = []

        def timed_out(cmd, tier, timeout_seconds):
            work_dirs.append(Path(cmd[-1]).parent)
            raise TranscodeTimeoutError(tier.name, timeout_seconds)

        with patch("transcode_service.transcode.encoder.run_encoder", side_effect=timed_out):
            with pytest.raises(TranscodeTimeoutError):
                await encode_tier(
                    tmp_path / "clip.mp4", get_tier("720p"), hls_base_path=HLS, token="tok", settings=test_settings
                )

        assert bucket.objects == {}
        assert not work_dirs[0].exists()

    @pytest.mark.asyncio
    @patch("transcode_service.transcode.encoder.run_encoder")
    async def test_timeout_override(self, mock_run, bucket, test_settings, tmp_path):
        """Should pass an explicit deadline through to the encoder."""
        mock_run.side_effect = fake_ffmpeg

        await encode_tier(
            tmp_path / "clip.mp4",
            get_tier("1080p"),
            hls_base_path=HLS,
            token="tok",
            timeout_seconds=42,
            settings=test_settings,
        )

        assert mock_run.call_args.args[2] == 42
