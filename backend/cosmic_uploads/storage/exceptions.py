"""Exceptions raised by the file store."""
from datetime import datetime


class StorageError(Exception):
    """Base class for every failure reported by :class:`FileStore`."""

    def __init__(self, file_id: str, message: str) -> None:
        self.file_id = file_id
        super().__init__(message)


class FileNotFound(StorageError):
    """No such identifier: never existed, or already reaped."""

    def __init__(self, file_id: str) -> None:
        super().__init__(file_id, f"File {file_id} not found")


class FileExpired(StorageError):
    """The file existed but its time-to-live has passed."""

    def __init__(self, file_id: str, expired_at: datetime) -> None:
        self.expired_at = expired_at
        super().__init__(
            file_id,
            f"File {file_id} expired at {expired_at.isoformat()}",
        )


class StorageWriteError(StorageError):
    """The blob could not be written (disk full, permission denied, ...)."""

    def __init__(self, file_id: str, reason: str) -> None:
        self.reason = reason
        super().__init__(file_id, f"Failed to store file {file_id}: {reason}")


class BlobIOError(StorageError):
    """The index lists the file but its blob cannot be read from disk.

    The stale index entry has already been purged when this is raised.
    """

    def __init__(self, file_id: str, reason: str) -> None:
        self.reason = reason
        super().__init__(file_id, f"Blob for file {file_id} unavailable: {reason}")
