"""In-memory stand-ins for the media store, the bucket and the task queue."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any


def _deep_merge(target: dict[str, Any], updates: dict[str, Any]) -> None:
    """Firestore merge semantics: nested maps merge, everything else replaces."""
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeMediaStore:
    """Replaces the storage.firestore functions used by the pipeline."""

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self.manual_fixes: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple[str, dict[str, Any]]] = []

    def add(self, media_id: str, **fields: Any) -> dict[str, Any]:
        self.records[media_id] = dict(fields)
        return self.records[media_id]

    def _with_id(self, media_id: str) -> dict[str, Any]:
        data = copy.deepcopy(self.records[media_id])
        data["id"] = media_id
        return data

    def get_media(self, media_id, settings=None):
        if media_id not in self.records:
            return None
        return self._with_id(media_id)

    def merge_media(self, media_id, updates, settings=None):
        self.writes.append((media_id, copy.deepcopy(updates)))
        _deep_merge(self.records.setdefault(media_id, {}), updates)

    def append_failed_quality(self, media_id, entry, settings=None):
        self.records.setdefault(media_id, {}).setdefault("failedQualities", []).append(dict(entry))

    def find_media_by_field(self, field, value, settings=None):
        for media_id, data in self.records.items():
            if data.get(field) == value:
                return self._with_id(media_id)
        return None

    def list_recent_media(self, limit, settings=None):
        return [self._with_id(media_id) for media_id in list(self.records)[::-1][:limit]]

    def list_processing_videos(self, settings=None):
        return [
            self._with_id(media_id)
            for media_id, data in self.records.items()
            if data.get("transcodeStatus") == "processing" and data.get("type") == "video"
        ]

    def save_manual_fix(self, fix_id, data, settings=None):
        self.manual_fixes.setdefault(fix_id, {}).update(data)


class FakeBucket:
    """Replaces the storage.gcs object operations."""

    def __init__(self):
        self.objects: dict[str, dict[str, Any]] = {}
        self.sources: dict[str, bytes] = {}

    def upload_file(self, local_path, destination, *, token=None, content_type=None,
                    cache_control=None, bucket_name=None, settings=None):
        self.objects[destination] = {
            "data": Path(local_path).read_bytes(),
            "token": token,
            "content_type": content_type,
            "cache_control": cache_control,
        }
        return destination

    def upload_text(self, text, destination, *, token=None, content_type=None,
                    cache_control=None, bucket_name=None, settings=None):
        self.objects[destination] = {
            "data": text.encode("utf-8"),
            "token": token,
            "content_type": content_type,
            "cache_control": cache_control,
        }
        return destination

    def download_to_file(self, object_name, local_path, bucket_name=None, settings=None):
        Path(local_path).write_bytes(self.sources.get(object_name, b"source"))
        return Path(local_path)

    def object_exists(self, object_name, bucket_name=None, settings=None):
        return object_name in self.objects

    def delete_prefix(self, prefix, bucket_name=None, settings=None):
        doomed = [name for name in self.objects if name.startswith(prefix)]
        for name in doomed:
            del self.objects[name]
        return len(doomed)

    def text(self, name: str) -> str:
        return self.objects[name]["data"].decode("utf-8")

    def names_under(self, prefix: str) -> list[str]:
        return sorted(name for name in self.objects if name.startswith(prefix))


class FakeQueue:
    """Collects enqueued tier jobs instead of pushing them to Redis."""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    async def enqueue_transcode(self, message):
        if self.fail:
            raise ConnectionError("queue unavailable")
        self.messages.append(message)
        return f"task-{len(self.messages)}"


def fake_encoder(bucket: FakeBucket, failures: dict[str, BaseException] | None = None):
    """
    Build an encode_tier replacement that writes objects to the fake bucket.

    A tier listed in failures leaves a partial segment behind and raises.
    """
    from transcode_service.media.types import tier_base_path

    failures = failures or {}

    async def encode(source_path, tier, *, hls_base_path, token, settings=None, **kwargs):
        base = tier_base_path(hls_base_path, tier.name)
        bucket.objects[f"{base}seg_000.ts"] = {"data": b"ts", "token": token}
        if tier.name in failures:
            raise failures[tier.name]
        bucket.objects[f"{base}index.m3u8"] = {"data": b"#EXTM3U\n", "token": token}
        return f"{base}index.m3u8"

    return encode
