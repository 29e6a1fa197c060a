"""Background worker for processing chained tier jobs."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from ..media.types import TranscodeJobMessage
from .chain import process_transcode_job
from .queue import TaskQueue, get_task_queue

logger = logging.getLogger(__name__)

# Global shutdown event for signaling threads to stop
_shutdown_event = threading.Event()


def is_shutting_down() -> bool:
    """Check if the service is shutting down."""
    return _shutdown_event.is_set()


def signal_shutdown() -> None:
    """Signal all workers to shut down."""
    _shutdown_event.set()


def reset_shutdown() -> None:
    """Reset the shutdown signal (for testing)."""
    _shutdown_event.clear()


class TranscodeWorker:
    """Background worker that processes tier jobs from the Redis queue."""

    def __init__(self, queue: TaskQueue):
        self.queue = queue
        self.running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the worker loop."""
        if self.running:
            logger.warning("Worker already running")
            return

        self.running = True
        reset_shutdown()
        self._task = asyncio.create_task(self._run())
        logger.info("Transcode worker started")

    async def stop(self) -> None:
        """Stop the worker loop gracefully."""
        logger.info("Stopping transcode worker...")
        self.running = False
        signal_shutdown()

        if self._task:
            self._task.cancel()
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=2.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            except Exception as e:
                logger.warning(f"Error waiting for worker task: {e}")
        logger.info("Transcode worker stopped")

    async def _run(self) -> None:
        """Main worker loop."""
        while self.running:
            try:
                task = await self._dequeue_with_shutdown_check(timeout=1)
                if task is None:
                    continue

                if not self.running:
                    break

                await self.process_task(task)

            except asyncio.CancelledError:
                logger.info("Worker loop cancelled")
                break
            except Exception as e:
                logger.exception(f"Worker error: {e}")
                if self.running:
                    await asyncio.sleep(1)

    async def _dequeue_with_shutdown_check(self, timeout: int = 1) -> dict[str, Any] | None:
        """Dequeue with cancellation support."""
        try:
            return await asyncio.wait_for(
                self.queue.dequeue(timeout=timeout),
                timeout=timeout + 1,
            )
        except asyncio.TimeoutError:
            return None

    async def process_task(self, task: dict[str, Any]) -> None:
        """Process a single task."""
        task_id = task["id"]
        task_type = task["type"]

        logger.info(f"Processing task {task_id} (type: {task_type})")

        try:
            await self.queue.update_task_status(task_id, "running")

            if task_type != "transcode":
                raise ValueError(f"Unknown task type: {task_type}")

            message = TranscodeJobMessage.from_payload(task["payload"])
            result = await process_transcode_job(message)

            if not is_shutting_down():
                await self.queue.update_task_status(task_id, result["status"])
                logger.info(f"Task {task_id} {result['status']} ({message.tier_name} for media {message.media_id})")

        except asyncio.CancelledError:
            logger.info(f"Task {task_id} cancelled due to shutdown")
            raise
        except Exception as e:
            logger.exception(f"Task {task_id} failed: {e}")
            if not is_shutting_down():
                await self.queue.update_task_status(task_id, "failed", str(e))


_worker: TranscodeWorker | None = None


async def start_worker() -> TranscodeWorker:
    """Start the global transcode worker."""
    global _worker

    if _worker is None:
        queue = await get_task_queue()
        _worker = TranscodeWorker(queue)
        await _worker.start()

    return _worker


async def stop_worker() -> None:
    """Stop the global transcode worker."""
    global _worker

    if _worker is not None:
        await _worker.stop()
        _worker = None
