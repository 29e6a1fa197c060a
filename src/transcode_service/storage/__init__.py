from .gcs import (
    build_download_url,
    delete_prefix,
    download_to_file,
    object_exists,
    upload_file,
    upload_text,
)
from .firestore import (
    get_firestore_client,
    get_media,
    merge_media,
    append_failed_quality,
    find_media_by_field,
    list_recent_media,
    list_processing_videos,
    save_manual_fix,
)

__all__ = [
    "build_download_url",
    "delete_prefix",
    "download_to_file",
    "object_exists",
    "upload_file",
    "upload_text",
    "get_firestore_client",
    "get_media",
    "merge_media",
    "append_failed_quality",
    "find_media_by_field",
    "list_recent_media",
    "list_processing_videos",
    "save_manual_fix",
]
