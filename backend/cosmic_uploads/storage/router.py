"""FastAPI router for upload, metadata, download and preview endpoints.

All endpoints are under the /api prefix.  Errors use the ``{"error": ...}``
body the web frontend already understands.
"""
import asyncio
import logging
from pathlib import Path
from typing import BinaryIO, Dict, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse

from ..config import AppConfig
from .exceptions import BlobIOError, FileExpired, FileNotFound, StorageWriteError
from .schemas import (
    FileInfoResponse,
    FileRecord,
    UploadResponse,
    is_previewable,
    to_epoch_millis,
    to_iso,
)
from .service import FileStore

logger = logging.getLogger(__name__)

# Inline content is rendered as an opaque origin with scripts disabled.
PREVIEW_HEADERS = {"Content-Security-Policy": "sandbox"}

router = APIRouter(prefix="/api", tags=["files"])


# A single FileStore is created in the app lifespan and kept on app.state.
def get_file_store(request: Request) -> FileStore:
    return request.app.state.file_store


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _not_found(exc: Exception) -> JSONResponse:
    if isinstance(exc, FileExpired):
        return _error(404, "File has expired")
    if isinstance(exc, BlobIOError):
        return _error(404, "File not found on disk")
    return _error(404, "File not found")


def _file_response(
    record: FileRecord,
    path: Path,
    disposition: str,
    headers: Optional[Dict[str, str]] = None,
) -> FileResponse:
    return FileResponse(
        path=path,
        filename=record.original_name,
        media_type=record.mime_type,
        content_disposition_type=disposition,
        headers=headers,
    )


def _measure(fh: BinaryIO) -> int:
    fh.seek(0, 2)
    size = fh.tell()
    fh.seek(0)
    return size


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: Optional[UploadFile] = File(None),
    store: FileStore = Depends(get_file_store),
    config: AppConfig = Depends(get_app_config),
):
    """Store an uploaded file for 24 hours.

    Returns:
        UploadResponse with the new file ID and its expiry time.

    Errors:
        400: No ``file`` field in the multipart body
        413: File exceeds the configured upload limit
        500: The file could not be stored
    """
    if file is None:
        return _error(400, "No file uploaded")

    size = file.size
    if size is None:
        size = await asyncio.to_thread(_measure, file.file)
    limit = config.upload.max_file_size_bytes
    if size > limit:
        logger.warning("Rejected upload %s: %d bytes > %d", file.filename, size, limit)
        return _error(413, f"File size exceeds limit of {limit} bytes")

    try:
        record = await store.register(
            file.file,
            original_name=file.filename or "unnamed",
            mime_type=file.content_type,
        )
    except StorageWriteError as exc:
        logger.error("Upload error: %s", exc)
        return _error(500, "Upload failed")
    finally:
        await file.close()

    return UploadResponse(
        fileId=record.id,
        expiresAt=to_iso(store.expires_at(record)),
    )


@router.get("/file/{file_id}", response_model=FileInfoResponse)
async def get_file_info(file_id: str, store: FileStore = Depends(get_file_store)):
    """Return public metadata for a file, or 404 if missing or expired."""
    try:
        record = await store.lookup(file_id)
    except (FileNotFound, FileExpired) as exc:
        return _not_found(exc)

    return FileInfoResponse(
        fileId=record.id,
        originalName=record.original_name,
        size=record.size,
        mimetype=record.mime_type,
        uploadTime=to_epoch_millis(record.uploaded_at),
        expiresAt=to_iso(store.expires_at(record)),
    )


@router.get("/download/{file_id}")
async def download_file(file_id: str, store: FileStore = Depends(get_file_store)):
    """Stream a file as an attachment under its original name."""
    try:
        record, path = await store.resolve_blob(file_id)
    except (FileNotFound, FileExpired, BlobIOError) as exc:
        return _not_found(exc)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Download error for %s", file_id)
        return _error(500, "Download failed")

    return _file_response(record, path, "attachment")


@router.get("/preview/{file_id}")
async def preview_file(file_id: str, store: FileStore = Depends(get_file_store)):
    """Serve a file inline if its type is safe to render in a browser.

    Errors:
        400: The file's MIME type is not previewable
        404: Missing, expired, or gone from disk
    """
    try:
        record = await store.lookup(file_id)
        if not is_previewable(record.mime_type):
            return _error(400, "File type not previewable")
        record, path = await store.resolve_blob(file_id)
    except (FileNotFound, FileExpired, BlobIOError) as exc:
        return _not_found(exc)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Preview error for %s", file_id)
        return _error(500, "Preview failed")

    return _file_response(record, path, "inline", PREVIEW_HEADERS)
