"""
Tests for StorageService — validation, upload, soft delete and orphan sweep.

These run the service directly against the test database with an in-memory
driver (RecordingDriver) so every backend call can be counted.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from keystone.exceptions import (
    FileTooLargeError,
    NotFoundError,
    StorageBackendError,
    UnsupportedMediaTypeError,
)
from keystone.models.stored_file import StoredFile
from keystone.services import storage_service
from keystone.services.storage_service import (
    IncomingFile,
    PartialBatchFailure,
    StorageService,
    generate_filename,
)
from keystone.stores.file_store import FileStore
from tests.fakes import RecordingDriver


class MovableClock:
    def __init__(self):
        self.current = datetime(2024, 3, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current


def png(name: str = "photo.png", size: int = 16) -> IncomingFile:
    return IncomingFile(data=b"\x89PNG" + b"0" * (size - 4), filename=name, mime_type="image/png", size=size)


@pytest.fixture
def driver():
    return RecordingDriver()


@pytest.fixture
def clock():
    return MovableClock()


@pytest.fixture
def service(db_session, driver, settings, clock):
    return StorageService(FileStore(db_session), driver, settings, clock=clock)


def test_generate_filename_keeps_lowercased_extension():
    name = generate_filename("Holiday.JPG")
    assert name.endswith(".jpg")
    assert name != generate_filename("Holiday.JPG")


def test_generate_filename_without_extension():
    assert "." not in generate_filename("README")


class TestValidation:
    async def test_too_large_never_reaches_backend(self, service, driver, settings):
        big = settings.max_upload_size_bytes + 1
        with pytest.raises(FileTooLargeError) as exc_info:
            await service.upload_one(
                IncomingFile(data=b"", filename="big.png", mime_type="image/png", size=big)
            )
        assert exc_info.value.status_code == 413
        assert driver.uploads == []

    async def test_exact_limit_is_allowed(self, service, settings):
        limit = settings.max_upload_size_bytes
        stored = await service.upload_one(
            IncomingFile(data=b"0" * limit, filename="edge.png", mime_type="image/png", size=limit)
        )
        assert stored.size == limit

    async def test_disallowed_type_never_reaches_backend(self, service, driver):
        with pytest.raises(UnsupportedMediaTypeError) as exc_info:
            await service.upload_one(
                IncomingFile(data=b"#!", filename="run.sh", mime_type="text/x-shellscript", size=2)
            )
        assert "image/png" in exc_info.value.detail
        assert driver.uploads == []


class TestUpload:
    async def test_upload_records_metadata(self, service, driver):
        stored = await service.upload_one(png("Cat.PNG"), is_public=True)
        assert stored.id is not None
        assert stored.original_name == "Cat.PNG"
        assert stored.filename.endswith(".png")
        assert stored.driver == "memory"
        assert stored.url == f"memory://{stored.filename}"
        assert stored.is_public is True
        assert stored.deleted_at is None
        assert driver.blobs[stored.filename].startswith(b"\x89PNG")

    async def test_backend_failure_leaves_no_row(self, service, driver):
        driver.fail_upload.add(".png")
        with pytest.raises(StorageBackendError):
            await service.upload_one(png())
        listing = await service.list_files()
        assert listing["total"] == 0

    async def test_metadata_failure_removes_blob(self, db_session, driver, settings):
        class BrokenFileStore(FileStore):
            async def create(self, stored_file):
                raise RuntimeError("database unavailable")

        service = StorageService(BrokenFileStore(db_session), driver, settings)
        with pytest.raises(RuntimeError):
            await service.upload_one(png())
        assert len(driver.uploads) == 1
        assert driver.deletes == driver.uploads
        assert driver.blobs == {}


class TestBatchUpload:
    async def test_partial_failure(self, service, driver):
        files = [
            png("a.png"),
            IncomingFile(data=b"hi", filename="notes.txt", mime_type="text/plain", size=2),
            png("b.png"),
        ]
        result = await service.upload_many(files)

        assert sorted(f.original_name for f in result.uploaded) == ["a.png", "b.png"]
        assert len(result.failed) == 1
        failure = result.failed[0]
        assert failure.original_name == "notes.txt"
        assert failure.error_type == "unsupported_media_type"
        assert len(driver.uploads) == 2

    async def test_backend_failure_is_reported_per_file(self, service, driver):
        driver.fail_upload.add(".webp")
        result = await service.upload_many(
            [
                png("ok.png"),
                IncomingFile(data=b"RIFF", filename="bad.webp", mime_type="image/webp", size=4),
            ]
        )
        assert [f.original_name for f in result.uploaded] == ["ok.png"]
        assert result.failed[0].error_type == "storage_backend_error"
        assert result.failed[0].detail == "Storage upload failed"

    async def test_many_files_respect_concurrency(self, db_session, settings):
        in_flight = 0
        peak = 0

        class SlowDriver(RecordingDriver):
            async def upload(self, data, filename, mime_type):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return await super().upload(data, filename, mime_type)

        service = StorageService(FileStore(db_session), SlowDriver(), settings)
        result = await service.upload_many([png(f"{i}.png") for i in range(10)])

        assert len(result.uploaded) == 10
        assert result.failed == []
        assert 1 < peak <= settings.UPLOAD_CONCURRENCY
        assert len({f.filename for f in result.uploaded}) == 10

    async def test_failed_row_does_not_sink_the_batch(
        self, service, driver, db_session, monkeypatch
    ):
        names = iter(["taken.png", "first.png", "taken.png", "third.png"])
        monkeypatch.setattr(storage_service, "generate_filename", lambda original: next(names))
        await service.upload_one(png("existing.png"))

        # One file at a time so the second upload is the one that collides
        service.settings = service.settings.model_copy(update={"UPLOAD_CONCURRENCY": 1})
        result = await service.upload_many([png("1.png"), png("2.png"), png("3.png")])

        assert [f.original_name for f in result.uploaded] == ["1.png", "3.png"]
        assert result.failed == [
            PartialBatchFailure("2.png", "internal_error", "Upload failed")
        ]
        assert driver.deletes == ["taken.png"]

        await db_session.commit()
        persisted = await db_session.scalars(select(StoredFile.filename))
        assert sorted(persisted) == ["first.png", "taken.png", "third.png"]


class TestLookup:
    async def test_list_newest_first(self, service, clock):
        first = await service.upload_one(png("first.png"))
        second = await service.upload_one(png("second.png"))
        listing = await service.list_files(page=1, limit=10)
        assert listing["total"] == 2
        assert {f.id for f in listing["files"]} == {first.id, second.id}
        assert listing["files"][0].id == second.id

    async def test_missing_file(self, service):
        with pytest.raises(NotFoundError):
            await service.get_metadata(999)

    async def test_file_url_private_is_signed(self, service):
        stored = await service.upload_one(png(), is_public=False)
        assert (await service.file_url(stored.id)).endswith("?signed=1")


class TestSoftDelete:
    async def test_deleted_file_is_hidden(self, service, driver, clock):
        stored = await service.upload_one(png())
        result = await service.soft_delete(stored.id)

        assert result == {"message": "File deleted successfully"}
        assert driver.deletes == [stored.filename]
        assert stored.deleted_at == clock.current
        with pytest.raises(NotFoundError):
            await service.get_metadata(stored.id)
        assert (await service.list_files())["total"] == 0

        # Row is still there for the sweep
        row = await service.files.find_by_id(stored.id, include_deleted=True)
        assert row is not None

    async def test_delete_twice_is_not_found(self, service):
        stored = await service.upload_one(png())
        await service.soft_delete(stored.id)
        with pytest.raises(NotFoundError):
            await service.soft_delete(stored.id)

    async def test_backend_failure_keeps_file_live(self, service, driver):
        stored = await service.upload_one(png())
        driver.fail_delete = True
        with pytest.raises(StorageBackendError) as exc_info:
            await service.soft_delete(stored.id)
        assert "memory" not in exc_info.value.detail
        assert (await service.get_metadata(stored.id)).deleted_at is None


class TestSweep:
    async def _deleted_file(self, service, clock, days_ago: int):
        now = clock.current
        clock.current = now - timedelta(days=days_ago)
        stored = await service.upload_one(png())
        await service.soft_delete(stored.id)
        clock.current = now
        return stored

    async def test_sweeps_only_past_retention(self, service, driver, clock, settings):
        old = await self._deleted_file(service, clock, settings.ORPHANED_FILES_RETENTION_DAYS + 1)
        recent = await self._deleted_file(service, clock, 1)
        live = await service.upload_one(png())
        deletes_before = len(driver.deletes)

        result = await service.sweep_orphaned()

        assert result.deleted_count == 1
        assert result.failed == []
        assert result.retention_days == settings.ORPHANED_FILES_RETENTION_DAYS
        assert result.message == (
            f"Successfully deleted 1 orphaned files older than "
            f"{settings.ORPHANED_FILES_RETENTION_DAYS} days"
        )
        # Exactly one backend delete during the sweep
        assert driver.deletes[deletes_before:] == [old.filename]
        assert await service.files.find_by_id(old.id, include_deleted=True) is None
        assert await service.files.find_by_id(recent.id, include_deleted=True) is not None
        assert (await service.get_metadata(live.id)).id == live.id

    async def test_override_retention(self, service, clock):
        await self._deleted_file(service, clock, 3)
        result = await service.sweep_orphaned(retention_days=2)
        assert result.deleted_count == 1
        assert result.retention_days == 2

    async def test_zero_retention_is_not_the_default(self, service, clock):
        await self._deleted_file(service, clock, 1)
        result = await service.sweep_orphaned(retention_days=0)
        assert result.retention_days == 0
        assert result.deleted_count == 1

    async def test_nothing_to_sweep(self, service):
        result = await service.sweep_orphaned()
        assert result.deleted_count == 0
        assert result.failed == []

    async def test_failure_is_recorded_and_skipped(self, service, driver, clock):
        first = await self._deleted_file(service, clock, 40)
        second = await self._deleted_file(service, clock, 35)
        driver.fail_delete = True

        result = await service.sweep_orphaned()

        assert result.deleted_count == 0
        assert result.failed == [first.filename, second.filename]
        assert await service.files.find_by_id(first.id, include_deleted=True) is not None

    async def test_stop_event_ends_sweep(self, service, clock):
        await self._deleted_file(service, clock, 40)
        stop = asyncio.Event()
        stop.set()
        result = await service.sweep_orphaned(stop=stop)
        assert result.deleted_count == 0

    async def test_failed_row_does_not_sink_the_sweep(self, db_session, driver, settings, clock):
        class CollidingFileStore(FileStore):
            target: str | None = None
            taken: str | None = None

            async def hard_delete(self, stored_file):
                if stored_file.filename == self.target:
                    stored_file.filename = self.taken
                    await self.db.flush()
                await super().hard_delete(stored_file)

        files = CollidingFileStore(db_session)
        service = StorageService(files, driver, settings, clock=clock)
        first = await self._deleted_file(service, clock, 50)
        second = await self._deleted_file(service, clock, 45)
        third = await self._deleted_file(service, clock, 40)
        live = await service.upload_one(png())
        names = [first.filename, second.filename, third.filename, live.filename]
        files.target, files.taken = names[1], names[3]

        result = await service.sweep_orphaned()

        assert result.deleted_count == 2
        assert result.failed == [names[1]]
        await db_session.commit()
        remaining = await db_session.scalars(select(StoredFile.filename))
        assert sorted(remaining) == sorted([names[1], names[3]])
        # Backend deletes for the later file still went ahead
        assert driver.deletes[-3:] == names[:3]
