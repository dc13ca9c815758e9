"""
User router — own profile plus role administration.

Endpoints:
  GET   /users/me              — Current user's profile
  PATCH /users/me              — Update email, username or password
  GET   /users                 — [MANAGER+] List users at or below the caller's role
  PUT   /users/{user_id}/role  — [ADMINISTRATOR+] Change a user's role

Role changes follow the hierarchy rules in keystone.rbac: nobody but an
OWNER can touch an OWNER, and nobody but an OWNER can grant a role at or
above their own.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from keystone.dependencies import CurrentUser, UserServiceDep, require_min_role
from keystone.models.user import User
from keystone.rbac import UserRole
from keystone.schemas.user import (
    UpdateProfileRequest,
    UpdateUserRoleRequest,
    UserListResponse,
    UserResponse,
)

router = APIRouter()


@router.get("/me", response_model=UserResponse, summary="Get own profile")
async def get_me(user: CurrentUser):
    return user


@router.patch("/me", response_model=UserResponse, summary="Update own profile")
async def update_me(
    request: UpdateProfileRequest,
    user: CurrentUser,
    users: UserServiceDep,
):
    """
    Update the caller's profile.

    Changing the password needs the current password in `old_password`.
    """
    return await users.update_profile(
        user,
        email=request.email,
        username=request.username,
        old_password=request.old_password,
        new_password=request.new_password,
    )


@router.get(
    "",
    response_model=UserListResponse,
    summary="[Manager] List users at or below your role",
)
async def list_users(
    actor: Annotated[User, Depends(require_min_role(UserRole.MANAGER))],
    users: UserServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    return await users.list_users(actor, page=page, limit=limit)


@router.put(
    "/{user_id}/role",
    response_model=UserResponse,
    summary="[Administrator] Change a user's role",
)
async def update_role(
    user_id: uuid.UUID,
    request: UpdateUserRoleRequest,
    actor: Annotated[User, Depends(require_min_role(UserRole.ADMINISTRATOR))],
    users: UserServiceDep,
):
    return await users.update_role(user_id, request.role, actor)
