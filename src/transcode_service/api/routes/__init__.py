"""API route modules."""

from . import events
from . import maintenance
from . import media
from . import tasks

__all__ = ["events", "maintenance", "media", "tasks"]
