"""
User administration — profile reads/updates and role changes.

Role changes go through keystone.rbac.ensure_can_assign_role before anything
is written: a non-OWNER can't touch an OWNER and can't hand out a role at or
above their own level. Listing is scoped the same way: an actor only sees
users whose role is at or below their own.
"""

import logging
import math
import uuid

from keystone.exceptions import ConflictError, NotFoundError
from keystone.models.user import User
from keystone.rbac import UserRole, ensure_can_assign_role, roles_at_or_below
from keystone.security import hash_password, verify_password_or_fail
from keystone.stores.user_store import UserStore

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, users: UserStore):
        self.users = users

    async def list_users(
        self,
        actor: User,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        users, total = await self.users.list_paged(
            roles=roles_at_or_below(actor.role),
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "users": users,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    async def update_profile(
        self,
        user: User,
        email: str | None = None,
        username: str | None = None,
        old_password: str | None = None,
        new_password: str | None = None,
    ) -> User:
        """
        Update the caller's own profile.

        A password change needs both old_password and new_password; the old
        one is verified against the stored hash first.

        Raises:
            ConflictError: The new email/username belongs to another user.
            InvalidCredentialsError: old_password is wrong.
        """
        if email or username:
            existing = await self.users.find_by_email_or_username(email, username)
            if existing is not None and existing.id != user.id:
                raise ConflictError("Email or username already exists")

        changes: dict = {}
        if email:
            changes["email"] = email
        if username:
            changes["username"] = username
        if old_password and new_password:
            verify_password_or_fail(
                old_password, user.hashed_password, "Current password is incorrect"
            )
            changes["hashed_password"] = hash_password(new_password)

        if not changes:
            return user
        return await self.users.update_profile(user, **changes)

    async def update_role(
        self,
        target_id: uuid.UUID,
        new_role: UserRole,
        actor: User,
    ) -> User:
        """
        Change another user's role.

        Raises:
            NotFoundError: Target user doesn't exist.
            ForbiddenError: The hierarchy rules forbid this assignment.
        """
        target = await self.users.find_by_id(target_id)
        if target is None:
            raise NotFoundError("User")

        ensure_can_assign_role(actor.role, target.role, new_role)

        updated = await self.users.update_role(target, new_role)
        logger.info(
            "User %s changed role of %s to %s", actor.id, target.id, new_role.value
        )
        return updated
