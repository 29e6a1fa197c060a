"""Exceptions raised by the transcode pipeline."""

from __future__ import annotations


class TranscodeError(Exception):
    """Base class for transcode pipeline failures."""


class EncoderError(TranscodeError):
    """ffmpeg exited with an error or could not be started."""

    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr


class TranscodeTimeoutError(TranscodeError):
    """An encode exceeded its tier deadline and was killed."""

    def __init__(self, tier_name: str, timeout_seconds: float):
        super().__init__(f"Encoding {tier_name} timed out after {timeout_seconds:.0f}s")
        self.tier_name = tier_name
        self.timeout_seconds = timeout_seconds


class UploadError(TranscodeError):
    """An artifact upload failed after all retries."""


class MediaNotFoundError(TranscodeError):
    """No metadata record matches a storage object."""


class ChainEnqueueError(TranscodeError):
    """The next job of a tier chain could not be enqueued."""
