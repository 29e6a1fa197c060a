"""Background tier job processing using Redis."""

from .queue import TaskQueue, get_task_queue, close_task_queue
from .worker import TranscodeWorker, start_worker, stop_worker

__all__ = [
    "TaskQueue",
    "get_task_queue",
    "close_task_queue",
    "TranscodeWorker",
    "start_worker",
    "stop_worker",
]
