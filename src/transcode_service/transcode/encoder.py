"""Per-tier HLS encoding with ffmpeg."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

from ..config import Settings, get_settings
from ..errors import EncoderError, TranscodeTimeoutError
from ..hls.manifest import rewrite_manifest
from ..ladder import TierConfig
from ..media.types import tier_base_path
from ..storage import gcs

logger = logging.getLogger(__name__)

SEGMENT_SECONDS = 4
MANIFEST_NAME = "index.m3u8"
SEGMENT_PATTERN = "seg_%03d.ts"

AUDIO_ARGS = ["-c:a", "aac", "-b:a", "128k", "-ar", "48000", "-ac", "2"]


def build_ffmpeg_command(
    source_path: str | Path,
    output_dir: str | Path,
    tier: TierConfig,
    ffmpeg_path: str = "ffmpeg",
) -> list[str]:
    """Build the ffmpeg invocation producing one tier's HLS output."""
    output_dir = Path(output_dir)
    return [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-i", str(source_path),
        "-vf", tier.scale_filter,
        "-c:v", "libx264",
        "-profile:v", "main",
        "-preset", tier.preset,
        "-crf", str(tier.crf),
        "-pix_fmt", "yuv420p",
        *AUDIO_ARGS,
        "-start_number", "0",
        "-hls_time", str(SEGMENT_SECONDS),
        "-hls_flags", "independent_segments",
        "-hls_list_size", str(tier.segment_list_size),
        "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
        "-f", "hls",
        str(output_dir / MANIFEST_NAME),
    ]


def run_encoder(cmd: list[str], tier: TierConfig, timeout_seconds: float) -> None:
    """
    Run ffmpeg, blocking until it exits or the deadline passes.

    On timeout the ffmpeg process is killed before TranscodeTimeoutError is
    raised.
    """
    logger.info(f"Encoding {tier.name} (preset={tier.preset}, crf={tier.crf}, timeout={timeout_seconds:.0f}s)")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired:
        raise TranscodeTimeoutError(tier.name, timeout_seconds)
    except FileNotFoundError:
        raise EncoderError("ffmpeg not found. Please install ffmpeg.")

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise EncoderError(
            f"ffmpeg exited with code {result.returncode} while encoding {tier.name}: {stderr[-300:]}",
            stderr=stderr,
        )


def upload_tier_outputs(
    output_dir: str | Path,
    destination_prefix: str,
    token: str,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> list[str]:
    """
    Upload every file of a finished tier.

    Segments go first and the manifest last, so a visible manifest never
    points at a segment that is not uploaded yet.
    """
    output_dir = Path(output_dir)
    files = sorted(p for p in output_dir.iterdir() if p.is_file())
    files.sort(key=lambda p: p.suffix == ".m3u8")

    uploaded = []
    for path in files:
        uploaded.append(
            gcs.upload_file(
                path,
                f"{destination_prefix}{path.name}",
                token=token,
                bucket_name=bucket_name,
                settings=settings,
            )
        )
    return uploaded


async def encode_tier(
    source_path: str | Path,
    tier: TierConfig,
    *,
    hls_base_path: str,
    token: str,
    bucket_name: str | None = None,
    timeout_seconds: float | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Encode one tier, rewrite its manifest and upload the outputs.

    Args:
        source_path: Local path of the downloaded source
        tier: Tier to produce
        hls_base_path: Storage folder shared by every tier of the asset
        token: The asset's shared download token
        bucket_name: Destination bucket (defaults to the media bucket)
        timeout_seconds: Override of the tier's deadline

    Returns:
        Storage path of the tier manifest

    Raises:
        TranscodeTimeoutError: The encode exceeded its deadline
        EncoderError: ffmpeg failed
        UploadError: An output could not be uploaded after retries
    """
    settings = settings or get_settings()
    bucket_name = bucket_name or settings.media_gcs_bucket
    timeout_seconds = timeout_seconds or tier.timeout_seconds
    destination_prefix = tier_base_path(hls_base_path, tier.name)

    work_dir = Path(tempfile.mkdtemp(prefix=f"hls_{tier.name}_"))
    try:
        cmd = build_ffmpeg_command(source_path, work_dir, tier, settings.ffmpeg_path)
        await asyncio.to_thread(run_encoder, cmd, tier, timeout_seconds)

        manifest = work_dir / MANIFEST_NAME
        if not manifest.exists():
            raise EncoderError(f"ffmpeg produced no manifest for {tier.name}")

        rewrite_manifest(manifest, bucket_name, destination_prefix, token)
        uploaded = await asyncio.to_thread(
            upload_tier_outputs, work_dir, destination_prefix, token, bucket_name, settings
        )
        logger.info(f"Uploaded {len(uploaded)} files for {tier.name} to {destination_prefix}")
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    return f"{destination_prefix}{MANIFEST_NAME}"
