"""File store — data access for StoredFile metadata rows."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from keystone.models.stored_file import StoredFile


class FileStore:
    """
    Soft-deleted rows (deleted_at set) are invisible to find_by_id and
    list_paged unless explicitly asked for; only the retention sweep reads
    them via find_soft_deleted_before.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def savepoint(self) -> AsyncSessionTransaction:
        """
        SAVEPOINT scope for one item of a multi-item operation.

        A failed flush inside rolls back to the savepoint only; the session
        and the rest of the request's work stay usable.
        """
        return self.db.begin_nested()

    async def create(self, stored_file: StoredFile) -> StoredFile:
        self.db.add(stored_file)
        await self.db.flush()
        await self.db.refresh(stored_file)
        return stored_file

    async def find_by_id(
        self,
        file_id: int,
        include_deleted: bool = False,
    ) -> StoredFile | None:
        stmt = select(StoredFile).where(StoredFile.id == file_id)
        if not include_deleted:
            stmt = stmt.where(StoredFile.deleted_at.is_(None))
        return await self.db.scalar(stmt)

    async def list_paged(
        self,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[StoredFile], int]:
        """Live files, newest first, plus the total live count."""
        live = StoredFile.deleted_at.is_(None)
        total = await self.db.scalar(
            select(func.count(StoredFile.id)).where(live)
        ) or 0
        result = await self.db.execute(
            select(StoredFile)
            .where(live)
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def soft_delete(self, stored_file: StoredFile, when: datetime) -> StoredFile:
        stored_file.deleted_at = when
        await self.db.flush()
        return stored_file

    async def hard_delete(self, stored_file: StoredFile) -> None:
        await self.db.delete(stored_file)
        await self.db.flush()

    async def find_soft_deleted_before(self, cutoff: datetime) -> list[StoredFile]:
        result = await self.db.execute(
            select(StoredFile)
            .where(StoredFile.deleted_at.is_not(None))
            .where(StoredFile.deleted_at < cutoff)
            .order_by(StoredFile.deleted_at)
        )
        return list(result.scalars().all())
