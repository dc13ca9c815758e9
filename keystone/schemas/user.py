"""
Pydantic schemas for User-related requests and responses.

hashed_password and the refresh-token columns are NEVER included in any
response schema.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, model_validator

from keystone.rbac import UserRole


class UserResponse(BaseModel):
    """Public representation of a User."""
    id: uuid.UUID
    email: EmailStr
    username: str
    role: UserRole
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class UpdateProfileRequest(BaseModel):
    """
    Request body for PATCH /users/me.

    Changing the password needs both old_password and new_password.
    """
    email: EmailStr | None = None
    username: str | None = Field(
        default=None, min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$"
    )
    old_password: str | None = None
    new_password: str | None = Field(default=None, min_length=8, max_length=128)

    @model_validator(mode="after")
    def passwords_together(self) -> "UpdateProfileRequest":
        if bool(self.old_password) != bool(self.new_password):
            raise ValueError("old_password and new_password must be provided together")
        return self


class UpdateUserRoleRequest(BaseModel):
    """Request body for PATCH /users/{user_id}/role."""
    role: UserRole
