from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the transcode service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Google Cloud
    google_project_id: str = Field(..., alias="GOOGLE_PROJECT_ID")
    google_service_account_key: str | None = Field(default=None, alias="GOOGLE_SERVICE_ACCOUNT_KEY")

    # Firebase
    firebase_service_account_key: str | None = Field(default=None, alias="FIREBASE_SERVICE_ACCOUNT_KEY")
    media_collection: str = Field(default="media", alias="MEDIA_COLLECTION")
    manual_fix_collection: str = Field(default="manual_fixes", alias="MANUAL_FIX_COLLECTION")

    # GCS Storage
    media_gcs_bucket: str = Field(..., alias="MEDIA_GCS_BUCKET")
    # Only objects under this prefix are treated as user uploads
    upload_prefix: str = Field(default="media/", alias="UPLOAD_PREFIX")

    # Encoder binaries
    ffmpeg_path: str = Field(default="ffmpeg", alias="FFMPEG_PATH")
    ffprobe_path: str = Field(default="ffprobe", alias="FFPROBE_PATH")

    # Metadata record lookup (object write can be observed before the record commit)
    resolve_max_attempts: int = Field(default=15, alias="RESOLVE_MAX_ATTEMPTS", ge=1)
    resolve_base_delay_seconds: float = Field(default=0.5, alias="RESOLVE_BASE_DELAY_SECONDS", ge=0)
    resolve_max_delay_seconds: float = Field(default=8.0, alias="RESOLVE_MAX_DELAY_SECONDS", ge=0)
    resolve_fallback_scan_limit: int = Field(default=50, alias="RESOLVE_FALLBACK_SCAN_LIMIT", ge=1)

    # Artifact upload retries
    upload_max_attempts: int = Field(default=5, alias="UPLOAD_MAX_ATTEMPTS", ge=1)
    upload_base_delay_seconds: float = Field(default=1.0, alias="UPLOAD_BASE_DELAY_SECONDS", ge=0)
    upload_max_delay_seconds: float = Field(default=16.0, alias="UPLOAD_MAX_DELAY_SECONDS", ge=0)

    # Assets in processing longer than this are considered stuck by the maintenance scan
    stuck_processing_min_age_seconds: int = Field(default=30 * 60, alias="STUCK_PROCESSING_MIN_AGE_SECONDS", ge=0)

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # FastAPI
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8083, alias="APP_PORT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Pub/Sub
    transcode_event_topic: str = Field(default="media-transcode-events", alias="TRANSCODE_EVENT_TOPIC")
    # Subscription receiving GCS object-finalized notifications; pull consumer disabled if unset
    storage_event_subscription: str | None = Field(default=None, alias="STORAGE_EVENT_SUBSCRIPTION")

    # HMAC authentication for task pushes and maintenance calls
    # If not set, HMAC verification is disabled (dev mode)
    shared_secret: str | None = Field(default=None, alias="SHARED_SECRET")
    # Token expected as ?token= on Pub/Sub push deliveries of storage events
    push_verification_token: str | None = Field(default=None, alias="PUSH_VERIFICATION_TOKEN")

    @property
    def normalized_upload_prefix(self) -> str:
        prefix = self.upload_prefix.strip("/")
        return f"{prefix}/" if prefix else ""


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
