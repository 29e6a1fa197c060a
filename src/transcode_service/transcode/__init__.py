"""ffmpeg-based tier encoding."""

from .encoder import build_ffmpeg_command, encode_tier, run_encoder, upload_tier_outputs
from .poster import create_poster, extract_poster

__all__ = [
    "build_ffmpeg_command",
    "encode_tier",
    "run_encoder",
    "upload_tier_outputs",
    "create_poster",
    "extract_poster",
]
