"""
StoredFile model — metadata for a blob held by a storage driver.

The blob itself lives in whichever backend was active at upload time (the
`driver` column records which). This row is the system's source of truth for
listing and lookups.

Soft delete:
  deleted_at is NULL for live files. Deleting a file removes the blob and sets
  deleted_at; the row is then invisible to lookups and listings but stays in
  the table until the orphan sweep (keystone.retention) hard-deletes it after
  ORPHANED_FILES_RETENTION_DAYS.
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from keystone.database import Base


class StoredFile(Base):
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Generated name (uuid4 + original extension) — the key inside the backend
    filename: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    original_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    mime_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    size: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    driver: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    path: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
    )
    url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    is_public: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
