"""
Authentication router.

Endpoints:
  POST /auth/signup           — Register and get a token pair
  POST /auth/login            — Authenticate (email or username) and get a token pair
  POST /auth/refresh          — Rotate the token pair (Bearer <refresh token>)
  POST /auth/logout           — End the refresh chain (Bearer <access token>)
  POST /auth/forgot-password  — Request a password reset link
  POST /auth/reset-password   — Set a new password with a reset token

Security audit notes:
  - Plaintext passwords exist only in memory during request processing;
    they are hashed before any database operation and never logged.
  - Tokens appear only in response bodies and are never logged.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from keystone.dependencies import (
    AuthServiceDep,
    CurrentUser,
    DbSession,
    RefreshSession,
    get_refresh_session,
)
from keystone.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    TokenPairResponse,
)

router = APIRouter()


@router.post(
    "/signup",
    response_model=TokenPairResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def signup(request: SignupRequest, auth: AuthServiceDep, db: DbSession):
    """
    Register a new user with the USER role.

    - **email**: Must be a valid email format and not already registered
    - **username**: 3-100 characters, not already taken
    - **password**: Minimum 8 characters
    """
    user, pair = await auth.signup(
        email=request.email,
        username=request.username,
        password=request.password,
    )
    # The welcome mail only goes out for a committed account
    await db.commit()
    auth.send_welcome(user)
    return TokenPairResponse(
        user_id=user.id,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post(
    "/login",
    response_model=TokenPairResponse,
    summary="Authenticate and get a token pair",
)
async def login(request: LoginRequest, auth: AuthServiceDep):
    """
    Authenticate with email or username plus password.

    Send the access token as `Authorization: Bearer <token>` on subsequent
    requests; use the refresh token with POST /auth/refresh.
    """
    user, pair = await auth.login(request.identifier, request.password)
    return TokenPairResponse(
        user_id=user.id,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post(
    "/refresh",
    response_model=TokenPairResponse,
    summary="Rotate the token pair",
)
async def refresh(
    session: Annotated[RefreshSession, Depends(get_refresh_session)],
    auth: AuthServiceDep,
):
    """
    Exchange the current refresh token for a new pair.

    The presented refresh token stops working as soon as this succeeds.
    """
    pair = await auth.refresh(session.user.id, session.refresh_token)
    return TokenPairResponse(
        user_id=session.user.id,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post("/logout", response_model=MessageResponse, summary="Log out")
async def logout(user: CurrentUser, auth: AuthServiceDep):
    """Invalidate the stored refresh token. Issued access tokens run out on their own."""
    return await auth.logout(user.id)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset link",
)
async def forgot_password(request: ForgotPasswordRequest, auth: AuthServiceDep):
    return await auth.request_password_reset(request.email)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Reset password with a reset token",
)
async def reset_password(request: ResetPasswordRequest, auth: AuthServiceDep):
    return await auth.reset_password(request.token, request.new_password)
