from .ffprobe import MediaMetadata, determine_media_type, extract_metadata

__all__ = ["MediaMetadata", "determine_media_type", "extract_metadata"]
