"""Google Cloud Storage operations."""

from __future__ import annotations

import json
import logging
import mimetypes
from pathlib import Path
from urllib.parse import quote

from google.api_core.exceptions import NotFound
from google.cloud import storage
from google.oauth2 import service_account

from ..config import Settings, get_settings
from ..errors import UploadError
from ..retry import is_transient_error, retry_call

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public,max-age=31536000,immutable"
NO_CACHE_CONTROL = "no-cache, max-age=0"

# mimetypes has no stable mapping for these across platforms
_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def _get_credentials(settings: Settings):
    """Get GCP credentials from service account key."""
    key_path = settings.google_service_account_key or settings.firebase_service_account_key
    if not key_path:
        return None

    path = Path(key_path).expanduser()
    if path.exists():
        return service_account.Credentials.from_service_account_file(str(path))

    # Try parsing as JSON
    try:
        key_data = json.loads(key_path)
        return service_account.Credentials.from_service_account_info(key_data)
    except json.JSONDecodeError:
        raise ValueError(f"Invalid service account key: {key_path}")


def _get_storage_client(settings: Settings | None = None) -> storage.Client:
    """Get a GCS client."""
    settings = settings or get_settings()
    credentials = _get_credentials(settings)
    return storage.Client(project=settings.google_project_id, credentials=credentials)


def _bucket(bucket_name: str | None, settings: Settings) -> storage.Bucket:
    client = _get_storage_client(settings)
    return client.bucket(bucket_name or settings.media_gcs_bucket)


def content_type_for(path: str | Path) -> str:
    """Infer a content type from a file extension."""
    suffix = Path(path).suffix.lower()
    if suffix in _CONTENT_TYPES:
        return _CONTENT_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(str(path))
    return guessed or "application/octet-stream"


def build_download_url(bucket_name: str, object_name: str, token: str) -> str:
    """
    Build a token-bound Firebase Storage download URL.

    The object must carry the same token in its firebaseStorageDownloadTokens
    metadata for the URL to resolve.
    """
    encoded = quote(object_name, safe="")
    return f"https://firebasestorage.googleapis.com/v0/b/{bucket_name}/o/{encoded}?alt=media&token={token}"


def upload_file(
    local_path: str | Path,
    destination: str,
    *,
    token: str | None = None,
    content_type: str | None = None,
    cache_control: str = IMMUTABLE_CACHE_CONTROL,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Upload a local file, retrying transient network errors.

    Raises:
        UploadError: If the upload still fails after all attempts.

    Returns:
        The destination object name.
    """
    settings = settings or get_settings()
    content_type = content_type or content_type_for(local_path)

    def _upload() -> None:
        blob = _bucket(bucket_name, settings).blob(destination)
        blob.cache_control = cache_control
        if token:
            blob.metadata = {"firebaseStorageDownloadTokens": token}
        blob.upload_from_filename(str(local_path), content_type=content_type)

    try:
        retry_call(
            _upload,
            max_attempts=settings.upload_max_attempts,
            base_delay=settings.upload_base_delay_seconds,
            max_delay=settings.upload_max_delay_seconds,
            jitter=settings.upload_base_delay_seconds / 2,
            is_retryable=is_transient_error,
            label=f"Upload of {destination}",
        )
    except Exception as e:
        raise UploadError(f"Failed to upload {destination}: {e}") from e

    logger.debug(f"Uploaded gs://{bucket_name or settings.media_gcs_bucket}/{destination}")
    return destination


def upload_text(
    text: str,
    destination: str,
    *,
    token: str | None = None,
    content_type: str = "application/vnd.apple.mpegurl",
    cache_control: str = NO_CACHE_CONTROL,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> str:
    """Upload an in-memory text object (e.g. a master playlist) with retries."""
    settings = settings or get_settings()

    def _upload() -> None:
        blob = _bucket(bucket_name, settings).blob(destination)
        blob.cache_control = cache_control
        if token:
            blob.metadata = {"firebaseStorageDownloadTokens": token}
        blob.upload_from_string(text, content_type=content_type)

    try:
        retry_call(
            _upload,
            max_attempts=settings.upload_max_attempts,
            base_delay=settings.upload_base_delay_seconds,
            max_delay=settings.upload_max_delay_seconds,
            jitter=settings.upload_base_delay_seconds / 2,
            label=f"Upload of {destination}",
        )
    except Exception as e:
        raise UploadError(f"Failed to upload {destination}: {e}") from e

    logger.info(f"Uploaded gs://{bucket_name or settings.media_gcs_bucket}/{destination}")
    return destination


def download_to_file(
    object_name: str,
    local_path: str | Path,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> Path:
    """Download an object to a local path."""
    settings = settings or get_settings()
    blob = _bucket(bucket_name, settings).blob(object_name)
    blob.download_to_filename(str(local_path))
    return Path(local_path)


def object_exists(
    object_name: str,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> bool:
    """Check if an object exists."""
    settings = settings or get_settings()
    return _bucket(bucket_name, settings).blob(object_name).exists()


def delete_prefix(
    prefix: str,
    bucket_name: str | None = None,
    settings: Settings | None = None,
) -> int:
    """
    Delete every object under a prefix.

    Returns the number of objects deleted. Objects that disappear
    concurrently are ignored.
    """
    settings = settings or get_settings()
    if not prefix:
        raise ValueError("Refusing to delete an empty prefix")

    client = _get_storage_client(settings)
    bucket = client.bucket(bucket_name or settings.media_gcs_bucket)

    deleted = 0
    for blob in client.list_blobs(bucket, prefix=prefix):
        try:
            blob.delete()
            deleted += 1
        except NotFound:
            continue

    logger.info(f"Deleted {deleted} objects under gs://{bucket.name}/{prefix}")
    return deleted
