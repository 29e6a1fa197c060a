"""HLS manifest handling."""

from .manifest import rewrite_manifest, rewrite_manifest_text
from .master import build, build_master_playlist, merge_tier

__all__ = [
    "rewrite_manifest",
    "rewrite_manifest_text",
    "build",
    "build_master_playlist",
    "merge_tier",
]
