"""Tests for the orphaned-file cleanup CLI (keystone.retention)."""

from datetime import datetime, timedelta, timezone

import pytest

from keystone import retention
from keystone.models.stored_file import StoredFile
from tests.fakes import RecordingDriver


@pytest.fixture
def driver(monkeypatch, session_factory):
    driver = RecordingDriver()
    monkeypatch.setattr(retention, "AsyncSessionLocal", session_factory)
    monkeypatch.setattr(retention, "build_storage_driver", lambda settings: driver)
    return driver


async def add_deleted_file(session_factory, filename: str, days_ago: int) -> int:
    async with session_factory() as session:
        row = StoredFile(
            filename=filename,
            original_name=filename,
            mime_type="image/png",
            size=4,
            driver="memory",
            path=filename,
            url=f"memory://{filename}",
            deleted_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
        )
        session.add(row)
        await session.commit()
        return row.id


async def test_sweep_purges_old_files(driver, session_factory):
    old_id = await add_deleted_file(session_factory, "old.png", days_ago=90)
    recent_id = await add_deleted_file(session_factory, "recent.png", days_ago=1)

    assert await retention.sweep() == 0
    assert driver.deletes == ["old.png"]

    async with session_factory() as session:
        assert await session.get(StoredFile, old_id) is None
        assert await session.get(StoredFile, recent_id) is not None


async def test_sweep_reports_failures(driver, session_factory):
    await add_deleted_file(session_factory, "stuck.png", days_ago=90)
    driver.fail_delete = True
    assert await retention.sweep() == 1


async def test_retention_override(driver, session_factory):
    await add_deleted_file(session_factory, "week-old.png", days_ago=7)
    assert await retention.sweep(retention_days=3) == 0
    assert driver.deletes == ["week-old.png"]


def test_cli_rejects_non_positive_retention():
    with pytest.raises(SystemExit) as exc_info:
        retention.main(["--retention-days", "0"])
    assert exc_info.value.code == 2
