"""File store: in-memory index of uploads plus a flat blob directory.

Every upload lives for a fixed TTL and the directory as a whole is capped;
when the cap is exceeded the oldest uploads are evicted first.  Metadata is
never written to disk, so it lives for the process lifetime only.

Concurrency:
  * One ``asyncio.Lock`` guards the index.  It is held for dictionary reads
    and mutations only, never across disk I/O.
  * All disk I/O runs in worker threads via ``asyncio.to_thread``.
  * Popping a record from the index is the commit point of a deletion.
    Every deletion path (lazy expiry, expiry reaper, capacity reaper, stale
    entry purge) goes through ``_pop_locked``, so a record is removed at
    most once no matter how many callers race on it.
"""
from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
import stat
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import (
    Awaitable,
    BinaryIO,
    Callable,
    Dict,
    Iterator,
    List,
    NoReturn,
    Optional,
    Tuple,
    Union,
)

from ..config import StorageSettings
from .exceptions import BlobIOError, FileExpired, FileNotFound, StorageWriteError
from .schemas import (
    DEFAULT_MIME_TYPE,
    PARTIAL_SUFFIX,
    FileRecord,
    generate_file_id,
    is_blob_name,
    safe_extension,
)

logger = logging.getLogger(__name__)

BlobSource = Union[bytes, bytearray, memoryview, BinaryIO]

_CHUNK_SIZE = 1024 * 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _consume_result(task: asyncio.Future) -> None:  # type: ignore[type-arg]
    # Marks the outcome retrieved when the awaiting caller was cancelled.
    if not task.cancelled():
        task.exception()


@dataclass
class OpenBlob:
    """A resolved, opened blob ready to be streamed to a client.

    The handle was opened while the record was still valid.  If the record
    is evicted mid-transfer the read may fail; callers treat that as a
    best-effort transfer.
    """
    record: FileRecord
    path:   Path
    handle: BinaryIO

    def iter_chunks(self, chunk_size: int = _CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the blob's bytes, closing the handle when done."""
        try:
            while True:
                chunk = self.handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.handle.close()


class FileStore:
    """Owns the upload index and blob directory, and reaps both."""

    def __init__(
        self,
        settings: StorageSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings
        self._upload_dir = Path(settings.upload_dir)
        self._ttl = timedelta(seconds=settings.ttl_seconds)
        self._max_storage_bytes = settings.max_storage_bytes
        self._clock = clock or _utcnow

        self._index: Dict[str, FileRecord] = {}
        self._lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []  # type: ignore[type-arg]

        self._upload_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._index

    def now(self) -> datetime:
        return self._clock()

    def expires_at(self, record: FileRecord) -> datetime:
        return record.expires_at(self._ttl)

    def blob_path(self, record: FileRecord) -> Path:
        return self._upload_dir / record.stored_filename

    async def total_size(self) -> int:
        """Sum of sizes over a consistent snapshot of the index."""
        async with self._lock:
            return sum(record.size for record in self._index.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the startup passes, then schedule both reapers."""
        if self._tasks:
            return
        if self._settings.purge_orphans_on_start:
            await self.purge_orphans()
        await self.sweep_expired()
        await self.enforce_capacity()

        self._tasks = [
            asyncio.create_task(
                self._run_periodically(
                    "expiry", self.sweep_expired,
                    self._settings.expiry_sweep_interval_seconds,
                )
            ),
            asyncio.create_task(
                self._run_periodically(
                    "capacity", self.enforce_capacity,
                    self._settings.capacity_sweep_interval_seconds,
                )
            ),
        ]
        logger.info(
            "FileStore started (dir=%s, ttl=%ss, cap=%d bytes)",
            self._upload_dir,
            self._settings.ttl_seconds,
            self._max_storage_bytes,
        )

    async def stop(self) -> None:
        """Cancel the reapers and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("FileStore stopped (%d files in index)", len(self._index))

    async def _run_periodically(
        self,
        name: str,
        sweep: Callable[[], Awaitable[int]],
        interval_seconds: int,
    ) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await sweep()
            except Exception:  # pylint: disable=broad-except
                logger.exception("%s reaper pass failed", name)

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(
        self,
        source: BlobSource,
        original_name: str,
        mime_type: Optional[str] = None,
    ) -> FileRecord:
        """Persist a fully received upload and index it.

        Either both the blob and the index entry exist afterwards, or
        neither does.  The write-and-insert step keeps running if the
        caller is cancelled, and so does the capacity pass that follows
        every registration.

        Raises:
            StorageWriteError: If the blob cannot be written.
        """
        task = asyncio.ensure_future(
            self._store_and_enforce(source, original_name, mime_type or DEFAULT_MIME_TYPE)
        )
        task.add_done_callback(_consume_result)
        return await asyncio.shield(task)

    async def _store_and_enforce(
        self,
        source: BlobSource,
        original_name: str,
        mime_type: str,
    ) -> FileRecord:
        record = await self._store(source, original_name, mime_type)
        await self.enforce_capacity()
        return record

    async def _store(
        self,
        source: BlobSource,
        original_name: str,
        mime_type: str,
    ) -> FileRecord:
        file_id = generate_file_id()
        stored_filename = f"{file_id}{safe_extension(original_name)}"
        path = self._upload_dir / stored_filename

        try:
            size = await asyncio.to_thread(self._write_blob, source, path)
        except OSError as exc:
            logger.error("Error writing file %s to %s: %s", file_id, path, exc)
            raise StorageWriteError(file_id, exc.strerror or str(exc)) from exc

        record = FileRecord(
            id=file_id,
            original_name=original_name,
            stored_filename=stored_filename,
            size=size,
            mime_type=mime_type,
            uploaded_at=self._clock(),
        )
        async with self._lock:
            self._index[file_id] = record

        logger.info(
            "Stored file %s: %s (%d bytes, %s)",
            file_id, original_name, size, mime_type,
        )
        return record

    @staticmethod
    def _write_blob(source: BlobSource, path: Path) -> int:
        """Write *source* to *path* via a partial file; return the size."""
        partial = path.with_name(path.name + PARTIAL_SUFFIX)
        try:
            with partial.open("wb") as fh:
                if isinstance(source, (bytes, bytearray, memoryview)):
                    fh.write(source)
                else:
                    shutil.copyfileobj(source, fh, _CHUNK_SIZE)
                fh.flush()
                os.fsync(fh.fileno())
            size = partial.stat().st_size
            os.replace(partial, path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return size

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def lookup(self, file_id: str) -> FileRecord:
        """Return the record for *file_id* if it exists and has not expired.

        An expired record is deleted on the spot.  Only the caller whose
        deletion removed it sees ``FileExpired``; everyone after that sees
        ``FileNotFound``.

        Raises:
            FileNotFound: No such record.
            FileExpired: The record was past its TTL and has been deleted.
        """
        async with self._lock:
            record = self._index.get(file_id)
        if record is None:
            raise FileNotFound(file_id)

        expires_at = self.expires_at(record)
        if self._clock() >= expires_at:
            removed = await self.delete(file_id, reason="expired")
            if removed is None:
                raise FileNotFound(file_id)
            raise FileExpired(file_id, expires_at)
        return record

    async def resolve_blob(self, file_id: str) -> Tuple[FileRecord, Path]:
        """Resolve *file_id* to its record and an existing blob path.

        Raises:
            FileNotFound: No such record, or it was removed while resolving.
            FileExpired: The record was past its TTL and has been deleted.
            BlobIOError: The index listed the file but its blob is missing;
                the stale index entry has been removed.
        """
        record = await self.lookup(file_id)
        path = self.blob_path(record)
        try:
            stat_result = await asyncio.to_thread(os.stat, path)
        except OSError as exc:
            await self._blob_unavailable(file_id, path, exc)
        if not stat.S_ISREG(stat_result.st_mode):
            await self._blob_unavailable(
                file_id, path, IsADirectoryError(errno.EISDIR, "Not a regular file"),
            )
        return record, path

    async def open_blob(self, file_id: str) -> OpenBlob:
        """Resolve *file_id* and open its blob for reading.

        Raises:
            FileNotFound: No such record, or it was removed while resolving.
            FileExpired: The record was past its TTL and has been deleted.
            BlobIOError: The blob is missing or unreadable; the stale index
                entry has been removed.
        """
        record, path = await self.resolve_blob(file_id)
        try:
            handle = await asyncio.to_thread(path.open, "rb")
        except OSError as exc:
            await self._blob_unavailable(file_id, path, exc)
        return OpenBlob(record=record, path=path, handle=handle)

    async def _blob_unavailable(self, file_id: str, path: Path, exc: OSError) -> NoReturn:
        # Only an entry the index still held is reported as a disk problem.
        if await self.delete(file_id, reason="blob missing") is None:
            raise FileNotFound(file_id) from exc
        logger.warning("Blob for file %s unreadable at %s: %s", file_id, path, exc)
        raise BlobIOError(file_id, exc.strerror or str(exc)) from exc

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _pop_locked(self, file_id: str) -> Optional[FileRecord]:
        # Caller must hold self._lock.
        return self._index.pop(file_id, None)

    async def delete(self, file_id: str, reason: str = "deleted") -> Optional[FileRecord]:
        """Remove *file_id* from the index, then remove its blob.

        Returns the removed record, or ``None`` if it was already gone.  A
        failed unlink is logged; the record stays removed either way.
        """
        async with self._lock:
            record = self._pop_locked(file_id)
        if record is None:
            return None
        await asyncio.shield(self._remove_blobs([record], reason))
        return record

    async def _remove_blobs(self, records: List[FileRecord], reason: str) -> None:
        for record in records:
            path = self.blob_path(record)
            try:
                await asyncio.to_thread(self._unlink_blob, path)
            except FileNotFoundError:
                logger.warning(
                    "Blob for file %s was already gone (%s)", record.id, reason,
                )
            except OSError as exc:
                logger.error("Error deleting file %s (%s): %s", record.id, reason, exc)
            else:
                logger.info("Deleted file %s (%s)", record.id, reason)

    @staticmethod
    def _unlink_blob(path: Path) -> None:
        path.unlink()

    # ------------------------------------------------------------------
    # Reapers
    # ------------------------------------------------------------------

    async def sweep_expired(self) -> int:
        """Delete every record past its TTL. Returns the number removed."""
        now = self._clock()
        async with self._lock:
            expired = [
                file_id
                for file_id, record in self._index.items()
                if now >= self.expires_at(record)
            ]

        removed = 0
        for file_id in expired:
            if await self.delete(file_id, reason="expired") is not None:
                removed += 1
        if removed:
            logger.info("Expiry sweep: removed %d expired files", removed)
        return removed

    async def enforce_capacity(self) -> int:
        """Evict oldest records until the total size fits the cap.

        Victims are chosen and popped under a single lock hold, ordered by
        ``(uploaded_at, id)``.  Returns the number evicted.
        """
        victims: List[FileRecord] = []
        async with self._lock:
            total = sum(record.size for record in self._index.values())
            if total > self._max_storage_bytes:
                oldest_first = sorted(
                    self._index.values(),
                    key=lambda record: (record.uploaded_at, record.id),
                )
                for record in oldest_first:
                    if total <= self._max_storage_bytes:
                        break
                    self._pop_locked(record.id)
                    total -= record.size
                    victims.append(record)

        if victims:
            await asyncio.shield(self._remove_blobs(victims, "storage limit"))
            logger.info(
                "Capacity sweep: evicted %d files, %d bytes remain (cap %d)",
                len(victims), total, self._max_storage_bytes,
            )
        return len(victims)

    async def purge_orphans(self) -> int:
        """Remove blobs in the upload dir that no record points to.

        Only names the store itself could have written are touched; any
        other file in the directory is left alone.

        Metadata does not survive a restart, so anything left behind by a
        previous process can never be served.  Intended to run before the
        store accepts uploads.
        """
        async with self._lock:
            known = {record.stored_filename for record in self._index.values()}

        def _purge() -> int:
            purged = 0
            for entry in self._upload_dir.iterdir():
                if entry.name in known or not is_blob_name(entry.name):
                    continue
                if not entry.is_file():
                    continue
                try:
                    entry.unlink()
                except OSError as exc:
                    logger.error("Error deleting orphaned blob %s: %s", entry, exc)
                    continue
                purged += 1
            return purged

        purged = await asyncio.to_thread(_purge)
        if purged:
            logger.info("Purged %d orphaned blobs from %s", purged, self._upload_dir)
        return purged
