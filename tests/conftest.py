"""Shared test fixtures and configuration."""

from __future__ import annotations

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from tests.helpers import FakeBucket, FakeMediaStore, FakeQueue
from transcode_service.config import Settings, get_settings


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Point settings at test values and disable retry sleeps."""
    monkeypatch.setenv("GOOGLE_PROJECT_ID", "test-project")
    monkeypatch.setenv("MEDIA_GCS_BUCKET", "test-bucket")
    monkeypatch.setenv("RESOLVE_BASE_DELAY_SECONDS", "0")
    monkeypatch.setenv("RESOLVE_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("UPLOAD_BASE_DELAY_SECONDS", "0")
    for name in ("SHARED_SECRET", "PUSH_VERIFICATION_TOKEN", "STORAGE_EVENT_SUBSCRIPTION"):
        monkeypatch.delenv(name, raising=False)

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings():
    """Settings built from the test environment."""
    return Settings(_env_file=None)


@pytest.fixture
def media_store():
    """In-memory media records behind the storage.firestore functions."""
    store = FakeMediaStore()
    with patch.multiple(
        "transcode_service.storage.firestore",
        get_media=store.get_media,
        merge_media=store.merge_media,
        append_failed_quality=store.append_failed_quality,
        find_media_by_field=store.find_media_by_field,
        list_recent_media=store.list_recent_media,
        list_processing_videos=store.list_processing_videos,
        save_manual_fix=store.save_manual_fix,
    ):
        yield store


@pytest.fixture
def bucket():
    """In-memory objects behind the storage.gcs functions."""
    fake = FakeBucket()
    with patch.multiple(
        "transcode_service.storage.gcs",
        upload_file=fake.upload_file,
        upload_text=fake.upload_text,
        download_to_file=fake.download_to_file,
        object_exists=fake.object_exists,
        delete_prefix=fake.delete_prefix,
    ):
        yield fake


@pytest.fixture
def published():
    """Captured transcode events."""
    with patch("transcode_service.media.readiness.publish_transcode_event") as mock_publish:
        yield mock_publish


@pytest.fixture
def task_queue():
    """Task queue that records chained jobs."""
    queue = FakeQueue()
    with patch("transcode_service.tasks.chain.get_task_queue", AsyncMock(return_value=queue)):
        yield queue


@pytest.fixture
def mock_publisher():
    """Create a mock Pub/Sub publisher."""
    publisher = MagicMock()
    publisher.publish.return_value.result.return_value = "msg-1"
    return publisher
