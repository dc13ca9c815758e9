"""
User model — the authentication identity.

Each User holds a login credential (email or username + hashed password), a
role from the hierarchy in keystone.rbac, and the current refresh-token
rotation state.

Refresh-token state:
  refresh_token and refresh_token_expires_at are written together and cleared
  together — both NULL (no active session chain) or both set. Only the most
  recently issued refresh token is valid; rotation overwrites the previous
  value.

The password is stored as an Argon2id hash — never in plaintext.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column

from keystone.database import Base
from keystone.rbac import UserRole


class User(Base):
    __tablename__ = "users"

    # Primary key: UUID provides globally unique IDs without sequential guessing
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # New signups are always USER; promotion goes through the role endpoint
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole),
        default=UserRole.USER,
        nullable=False,
    )

    # Soft-disable: deactivated users can't log in but their data is preserved
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Current rotation value; see module docstring
    refresh_token: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    refresh_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
