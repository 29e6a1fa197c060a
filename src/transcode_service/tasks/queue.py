"""Redis-based task queue for chained tier jobs."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import redis.asyncio as redis

from ..config import get_settings
from ..media.types import TranscodeJobMessage, utc_now_iso

logger = logging.getLogger(__name__)

TRANSCODE_QUEUE = "transcode_tasks"
TASK_STATUS_PREFIX = "task_status:"
TASK_STATUS_TTL_SECONDS = 60 * 60 * 24


class TaskQueue:
    """Simple Redis-based task queue."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def enqueue_transcode(self, message: TranscodeJobMessage) -> str:
        """
        Enqueue one tier job.

        Returns the task ID.
        """
        task_id = str(uuid.uuid4())
        now = utc_now_iso()

        task = {
            "id": task_id,
            "type": "transcode",
            "payload": message.to_payload(),
            "status": "pending",
            "created_at": now,
        }

        await self.redis.set(
            f"{TASK_STATUS_PREFIX}{task_id}",
            json.dumps({"status": "pending", "created_at": now, "mediaId": message.media_id}),
            ex=TASK_STATUS_TTL_SECONDS,
        )
        await self.redis.lpush(TRANSCODE_QUEUE, json.dumps(task))

        logger.info(f"Enqueued {message.tier_name} task {task_id} for media {message.media_id}")
        return task_id

    async def dequeue(self, timeout: int = 5) -> dict[str, Any] | None:
        """
        Dequeue a task from the queue.

        Returns None if no task is available within timeout.
        """
        result = await self.redis.brpop(TRANSCODE_QUEUE, timeout=timeout)
        if result is None:
            return None

        _, task_json = result
        return json.loads(task_json)

    async def update_task_status(
        self,
        task_id: str,
        status: str,
        error: str | None = None,
    ) -> None:
        """Update the status of a task."""
        data = {"status": status, "updated_at": utc_now_iso()}
        if error:
            data["error"] = error

        await self.redis.set(
            f"{TASK_STATUS_PREFIX}{task_id}",
            json.dumps(data),
            ex=TASK_STATUS_TTL_SECONDS,
        )


_task_queue: TaskQueue | None = None


async def get_task_queue() -> TaskQueue:
    """Get or create the global task queue instance."""
    global _task_queue

    if _task_queue is None:
        settings = get_settings()
        client = redis.from_url(settings.redis_url, decode_responses=True)
        _task_queue = TaskQueue(client)

    return _task_queue


async def close_task_queue() -> None:
    """Close the task queue connection."""
    global _task_queue

    if _task_queue is not None:
        await _task_queue.redis.close()
        _task_queue = None
