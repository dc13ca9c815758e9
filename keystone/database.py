"""
Async SQLAlchemy plumbing shared by the API and the retention CLI.

  - engine / AsyncSessionLocal: built from DATABASE_URL (aiosqlite by default)
  - Base: declarative base for User and StoredFile
  - get_db(): one session per request

A request's writes land in a single transaction that get_db() commits at the
end. Two places cut finer than that:

  - POST /auth/signup commits inside the handler so the welcome mail is only
    scheduled for a persisted account.
  - Batch uploads and the orphan sweep wrap each row in a SAVEPOINT
    (FileStore.savepoint) so one failed row doesn't poison the session.

Any exception, domain errors included, rolls the request back: a lost
refresh-token race or a rejected role change leaves nothing behind.

keystone.retention opens its own AsyncSessionLocal() session and commits
after the sweep.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from keystone.config import settings


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Rows are read after commit (token responses, upload results); keep them loaded.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """Request-scoped session: commit on success, roll back on any exception."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
