"""Pydantic schemas for stored uploads.

- FileRecord: immutable metadata the store keeps for every upload
- UploadResponse: returned by POST /api/upload
- FileInfoResponse: returned by GET /api/file/{file_id}

Blobs are stored flat in the upload directory as ``{id}{ext}``.  Nothing
from the client-supplied name other than a short alphanumeric extension
ever reaches the filesystem.
"""
import re
import secrets
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MIME_TYPE = "application/octet-stream"

# Mime type prefixes that may be served inline by the preview endpoint.
PREVIEWABLE_PREFIXES = (
    "image/",
    "text/",
    "application/json",
    "application/pdf",
)

# Suffix of a blob that is still being written.
PARTIAL_SUFFIX = ".part"

_EXTENSION_PATTERN = r"\.[A-Za-z0-9]{1,16}"
_SAFE_EXTENSION = re.compile(rf"^{_EXTENSION_PATTERN}$")
_BLOB_NAME = re.compile(
    rf"^[0-9a-f]{{32}}(?:{_EXTENSION_PATTERN})?(?:{re.escape(PARTIAL_SUFFIX)})?$"
)


class FileRecord(BaseModel):
    """Metadata for one stored upload.

    Records are frozen: the store creates them once and only ever removes
    them.  ``expires_at`` is derived from ``uploaded_at`` and the store's
    TTL rather than stored.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Opaque file ID (32 hex chars)")
    original_name: str = Field(..., description="Client-supplied filename, display only")
    stored_filename: str = Field(..., description="Blob filename inside the upload dir")
    size: int = Field(..., ge=0, description="Blob size in bytes")
    mime_type: str = Field(DEFAULT_MIME_TYPE, description="Client-declared MIME type")
    uploaded_at: datetime = Field(..., description="Upload completion time (UTC)")

    def expires_at(self, ttl: timedelta) -> datetime:
        return self.uploaded_at + ttl


class UploadResponse(BaseModel):
    """Response after a successful upload."""
    fileId: str
    message: str = "File uploaded successfully"
    expiresAt: str


class FileInfoResponse(BaseModel):
    """Public metadata for a stored file.

    ``uploadTime`` is epoch milliseconds, as the web frontend expects.
    """
    fileId: str
    originalName: str
    size: int
    mimetype: str
    uploadTime: int
    expiresAt: str


def generate_file_id() -> str:
    """Return a fresh identifier carrying 128 random bits."""
    return secrets.token_hex(16)


def safe_extension(original_name: str) -> str:
    """Extract the extension of *original_name* if it is safe to keep on disk.

    Examples:
        >>> safe_extension("holiday.JPG")
        '.JPG'
        >>> safe_extension("../../etc/passwd")
        ''
        >>> safe_extension("archive.tar.gz")
        '.gz'
    """
    # Strip any directory part a client may have sent (either separator).
    name = original_name.replace("\\", "/").rsplit("/", 1)[-1]
    ext = Path(name).suffix
    if _SAFE_EXTENSION.match(ext):
        return ext
    return ""


def is_blob_name(name: str) -> bool:
    """True if *name* could have been written by the store.

    Matches ``{id}``, ``{id}{ext}`` and the ``.part`` variants of both.
    """
    return _BLOB_NAME.match(name) is not None


def is_previewable(mime_type: str) -> bool:
    return mime_type.lower().startswith(PREVIEWABLE_PREFIXES)


def to_epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def to_iso(value: datetime) -> str:
    """Format like JavaScript's ``toISOString``: millisecond precision, ``Z``."""
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
