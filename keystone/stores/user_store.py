"""
User store — data access for User rows.

Services never build queries themselves; they go through this store so the
persistence engine stays swappable. Transactions are owned by the caller
(get_db() commits or rolls back per request); the store only flushes.

Refresh-token rotation is written with a compare-and-set UPDATE so two
concurrent refreshes presenting the same token can't both win: the second
UPDATE matches zero rows because the first already replaced the value.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from keystone.exceptions import ConflictError
from keystone.models.user import User
from keystone.rbac import UserRole

# Sentinel: "don't compare the stored refresh token"
ANY_TOKEN = object()


class UserStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def find_by_email(self, email: str) -> User | None:
        return await self.db.scalar(select(User).where(User.email == email))

    async def find_by_email_or_username(
        self,
        email: str | None,
        username: str | None,
    ) -> User | None:
        """First user whose email OR username matches."""
        conditions = []
        if email:
            conditions.append(User.email == email)
        if username:
            conditions.append(User.username == username)
        if not conditions:
            return None
        result = await self.db.execute(
            select(User).where(or_(*conditions)).order_by(User.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, user: User) -> User:
        """
        Insert a user.

        Raises:
            ConflictError: If the unique email/username constraint fires
                (two signups racing past the existence check).
        """
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictError("User already exists") from e
        await self.db.refresh(user)
        return user

    async def update_refresh_state(
        self,
        user_id: uuid.UUID,
        refresh_token: str | None,
        expires_at: datetime | None,
        expected_token=ANY_TOKEN,
    ) -> bool:
        """
        Write (or clear) the refresh token and its expiry together.

        Args:
            user_id: Row to update.
            refresh_token: New rotation value, or None to clear.
            expires_at: Stored expiry, None exactly when refresh_token is None.
            expected_token: When given, the update only applies if the row
                still holds this value (compare-and-set).

        Returns:
            True if the row was updated.
        """
        if (refresh_token is None) != (expires_at is None):
            raise ValueError("refresh_token and expires_at must both be set or both be None")

        stmt = update(User).where(User.id == user_id)
        if expected_token is not ANY_TOKEN:
            if expected_token is None:
                stmt = stmt.where(User.refresh_token.is_(None))
            else:
                stmt = stmt.where(User.refresh_token == expected_token)
        stmt = stmt.values(
            refresh_token=refresh_token,
            refresh_token_expires_at=expires_at,
            updated_at=datetime.now(timezone.utc),
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def update_last_login(self, user: User, when: datetime) -> None:
        user.last_login_at = when
        await self.db.flush()

    async def update_profile(self, user: User, **fields) -> User:
        """
        Apply profile field changes.

        Raises:
            ConflictError: If the new email/username collides with another user.
        """
        for name, value in fields.items():
            setattr(user, name, value)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictError("Email or username already exists") from e
        return user

    async def update_role(self, user: User, role: UserRole) -> User:
        user.role = role
        await self.db.flush()
        return user

    async def update_password(self, user: User, hashed_password: str) -> User:
        """Store a new hash and end every outstanding refresh chain."""
        user.hashed_password = hashed_password
        user.refresh_token = None
        user.refresh_token_expires_at = None
        await self.db.flush()
        return user

    async def list_paged(
        self,
        roles: list[UserRole],
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        """Users holding one of `roles`, oldest first, plus the total count."""
        criteria = User.role.in_(roles)
        total = await self.db.scalar(
            select(func.count(User.id)).where(criteria)
        ) or 0
        result = await self.db.execute(
            select(User)
            .where(criteria)
            .order_by(User.created_at, User.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total
