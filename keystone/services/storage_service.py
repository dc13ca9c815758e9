"""
Storage service — validation, upload, lookup, soft delete and orphan cleanup.

Sits between the HTTP layer and the active StorageDriver. It owns the
metadata rows (via FileStore); the driver owns the blobs.

Upload:
  validate (size, MIME type) -> generate filename -> driver.upload -> metadata row.
  Nothing reaches the backend for a file that fails validation. If the
  metadata write fails after the blob was stored, the blob is deleted again
  on a best-effort basis; if that also fails it stays orphaned and is logged.

Batch upload is best effort: files are uploaded independently with bounded
concurrency (UPLOAD_CONCURRENCY); failures land in the result's `failed` list
instead of aborting the batch. Driver calls overlap, metadata writes are
serialized because one AsyncSession can't be used concurrently. Each write
runs in its own savepoint so a failed row never takes the rest of the batch
(or the sweep) down with it.

Delete is a soft delete: the blob goes first, then deleted_at is set. A
failed backend delete leaves the row untouched. sweep_orphaned() later
hard-deletes rows that have been soft-deleted for longer than the retention
window.
"""

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import PurePath

from keystone.config import Settings
from keystone.exceptions import (
    FileTooLargeError,
    KeystoneError,
    NotFoundError,
    UnsupportedMediaTypeError,
)
from keystone.models.stored_file import StoredFile
from keystone.services.token_service import Clock, utc_now
from keystone.storage.base import StorageDriver
from keystone.stores.file_store import FileStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncomingFile:
    """An uploaded file already read into memory by the HTTP layer."""
    data: bytes
    filename: str
    mime_type: str
    size: int


@dataclass(frozen=True)
class PartialBatchFailure:
    original_name: str
    error_type: str
    detail: str


@dataclass
class BatchUploadResult:
    uploaded: list[StoredFile] = field(default_factory=list)
    failed: list[PartialBatchFailure] = field(default_factory=list)


@dataclass
class SweepResult:
    deleted_count: int
    failed: list[str]
    retention_days: int

    @property
    def message(self) -> str:
        return (
            f"Successfully deleted {self.deleted_count} orphaned files "
            f"older than {self.retention_days} days"
        )


def generate_filename(original_name: str) -> str:
    """Random, collision-resistant name that keeps the original extension."""
    return f"{uuid.uuid4()}{PurePath(original_name).suffix.lower()}"


class StorageService:
    def __init__(
        self,
        files: FileStore,
        driver: StorageDriver,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.files = files
        self.driver = driver
        self.settings = settings
        self._clock = clock
        self._db_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, file: IncomingFile) -> None:
        """
        Raises:
            FileTooLargeError: size > MAX_UPLOAD_SIZE_MB.
            UnsupportedMediaTypeError: MIME type not in ALLOWED_MIME_TYPES.
        """
        if file.size > self.settings.max_upload_size_bytes:
            raise FileTooLargeError(file.size, self.settings.MAX_UPLOAD_SIZE_MB)

        allowed = self.settings.allowed_mime_types
        if file.mime_type not in allowed:
            raise UnsupportedMediaTypeError(file.mime_type, sorted(allowed))

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_one(self, file: IncomingFile, is_public: bool = False) -> StoredFile:
        """
        Validate, store and record a single file.

        Raises:
            FileTooLargeError / UnsupportedMediaTypeError: Validation failed.
            StorageBackendError: The driver couldn't store the blob.
        """
        self.validate(file)

        filename = generate_filename(file.filename)
        result = await self.driver.upload(file.data, filename, file.mime_type)

        try:
            async with self._db_lock, self.files.savepoint():
                stored = await self.files.create(
                    StoredFile(
                        filename=filename,
                        original_name=file.filename,
                        mime_type=file.mime_type,
                        size=file.size,
                        driver=self.driver.name,
                        path=result.path,
                        url=result.url,
                        is_public=is_public,
                    )
                )
        except Exception:
            logger.exception(
                "Metadata write failed after upload of %s; removing blob", filename
            )
            await self._discard_blob(filename)
            raise

        logger.info("File uploaded successfully: %s", filename)
        return stored

    async def _discard_blob(self, filename: str) -> None:
        try:
            await self.driver.delete(filename)
        except KeystoneError:
            logger.error("Blob %s is orphaned (no metadata row)", filename)

    async def upload_many(
        self,
        files: list[IncomingFile],
        is_public: bool = False,
    ) -> BatchUploadResult:
        """Upload each file independently; never raises for per-file failures."""
        semaphore = asyncio.Semaphore(self.settings.UPLOAD_CONCURRENCY)

        async def attempt(file: IncomingFile) -> StoredFile | PartialBatchFailure:
            async with semaphore:
                try:
                    return await self.upload_one(file, is_public)
                except KeystoneError as e:
                    logger.error("Failed to upload file %s: %s", file.filename, e.detail)
                    return PartialBatchFailure(file.filename, e.error_type, e.detail)
                except Exception:
                    logger.exception("Failed to upload file %s", file.filename)
                    return PartialBatchFailure(
                        file.filename, "internal_error", "Upload failed"
                    )

        outcomes = await asyncio.gather(*(attempt(f) for f in files))

        result = BatchUploadResult()
        for outcome in outcomes:
            if isinstance(outcome, PartialBatchFailure):
                result.failed.append(outcome)
            else:
                result.uploaded.append(outcome)
        return result

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_metadata(self, file_id: int) -> StoredFile:
        stored = await self.files.find_by_id(file_id)
        if stored is None:
            raise NotFoundError("File")
        return stored

    async def list_files(self, page: int = 1, limit: int = 10) -> dict:
        files, total = await self.files.list_paged(offset=(page - 1) * limit, limit=limit)
        return {
            "files": files,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    async def file_url(self, file_id: int) -> str:
        """Fresh URL from the driver: direct for public files, signed for private."""
        stored = await self.get_metadata(file_id)
        return await self.driver.get_url(stored.filename, stored.is_public)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def _check_driver(self, stored: StoredFile) -> None:
        if stored.driver != self.driver.name:
            logger.warning(
                "File %s was stored with driver %s but the active driver is %s",
                stored.id,
                stored.driver,
                self.driver.name,
            )

    async def soft_delete(self, file_id: int) -> dict[str, str]:
        """
        Remove the blob, then mark the row deleted.

        Raises:
            NotFoundError: Missing or already deleted.
            StorageBackendError: Backend delete failed; the row is unchanged.
        """
        stored = await self.get_metadata(file_id)
        self._check_driver(stored)

        await self.driver.delete(stored.filename)
        await self.files.soft_delete(stored, self._clock())

        logger.info("File soft deleted: %s", stored.filename)
        return {"message": "File deleted successfully"}

    async def sweep_orphaned(
        self,
        retention_days: int | None = None,
        stop: asyncio.Event | None = None,
    ) -> SweepResult:
        """
        Permanently remove files soft-deleted more than retention_days ago.

        Each file is handled on its own: a failure is logged, recorded and
        skipped. Setting `stop` ends the sweep before the next file.
        """
        days = retention_days
        if days is None:
            days = self.settings.ORPHANED_FILES_RETENTION_DAYS
        cutoff: datetime = self._clock() - timedelta(days=days)
        candidates = await self.files.find_soft_deleted_before(cutoff)

        deleted_count = 0
        failed: list[str] = []
        for stored in candidates:
            if stop is not None and stop.is_set():
                logger.info("Cleanup interrupted after %s files", deleted_count)
                break
            filename = stored.filename
            try:
                self._check_driver(stored)
                await self.driver.delete(filename)
                async with self.files.savepoint():
                    await self.files.hard_delete(stored)
                deleted_count += 1
            except Exception:
                logger.exception("Failed to cleanup file: %s", filename)
                failed.append(filename)

        logger.info("Cleanup completed: %s files deleted", deleted_count)
        return SweepResult(deleted_count=deleted_count, failed=failed, retention_days=days)
