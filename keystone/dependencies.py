"""
FastAPI dependencies for services, authentication and authorization.

Process-wide components (settings, token service, storage driver,
notification sender) are built once in main.create_app() and kept on
app.state. Per-request services are assembled here around the request's
database session.

Authentication chain:

  get_current_user (access JWT -> User)
      └── require_min_role(role) (User -> User)   [role hierarchy check]

  get_refresh_session (refresh JWT + stored value -> RefreshSession)

If any dependency fails (missing/expired/forged token, insufficient role), the
request is rejected before the route handler runs.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from keystone.config import Settings
from keystone.database import get_db
from keystone.exceptions import ForbiddenError, InvalidRefreshTokenError, InvalidTokenError
from keystone.models.user import User
from keystone.notifications import BackgroundNotifier, NotificationSender
from keystone.rbac import UserRole, has_min_role
from keystone.services.auth_service import AuthService
from keystone.services.storage_service import StorageService
from keystone.services.token_service import TokenService
from keystone.services.user_service import UserService
from keystone.storage.base import StorageDriver
from keystone.stores.file_store import FileStore
from keystone.stores.user_store import UserStore

# auto_error=False so a missing header yields our own 401 instead of a 403
bearer_scheme = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Process-wide components
# ---------------------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_storage_driver(request: Request) -> StorageDriver:
    return request.app.state.storage_driver


def get_notification_sender(request: Request) -> NotificationSender:
    return request.app.state.notification_sender


def get_background_notifier(request: Request) -> BackgroundNotifier:
    return request.app.state.notifier


# ---------------------------------------------------------------------------
# Per-request services
# ---------------------------------------------------------------------------

def get_user_store(db: DbSession) -> UserStore:
    return UserStore(db)


def get_auth_service(
    users: Annotated[UserStore, Depends(get_user_store)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    notifier: Annotated[BackgroundNotifier, Depends(get_background_notifier)],
    sender: Annotated[NotificationSender, Depends(get_notification_sender)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthService:
    return AuthService(users, tokens, notifier, sender, settings)


def get_user_service(
    users: Annotated[UserStore, Depends(get_user_store)],
) -> UserService:
    return UserService(users)


def get_storage_service(
    db: DbSession,
    driver: Annotated[StorageDriver, Depends(get_storage_driver)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageService:
    return StorageService(FileStore(db), driver, settings)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
UserServiceDep = Annotated[UserService, Depends(get_user_service)]
StorageServiceDep = Annotated[StorageService, Depends(get_storage_service)]


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> User:
    """
    Validate the access token and return the corresponding active User.

    Raises:
        HTTPException 401: No bearer token.
        ExpiredTokenError / InvalidTokenError (401): Bad token, unknown or
            inactive user.
    """
    claims = tokens.verify_access(_bearer_token(credentials))

    user = await users.find_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise InvalidTokenError("Could not validate credentials")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


@dataclass
class RefreshSession:
    user: User
    refresh_token: str


async def get_refresh_session(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> RefreshSession:
    """
    Validate a refresh token: signature and expiry, then the stored value.

    Raises:
        InvalidTokenError / ExpiredTokenError: The JWT itself is bad.
        InvalidRefreshTokenError: Not the user's current refresh token.
        RefreshTokenExpiredError: The stored expiry has passed.
    """
    token = _bearer_token(credentials)
    claims = tokens.decode_refresh(token)

    user = await users.find_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise InvalidRefreshTokenError()

    tokens.verify_refresh(token, user.refresh_token, user.refresh_token_expires_at)
    return RefreshSession(user=user, refresh_token=token)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

def require_min_role(min_role: UserRole):
    """
    Build a dependency that requires the caller to hold at least `min_role`.

    Usage:
        @router.get("/admin-only")
        async def handler(user: User = Depends(require_min_role(UserRole.ADMINISTRATOR))):
            ...
    """

    async def dependency(user: CurrentUser) -> User:
        if not has_min_role(user.role, min_role):
            raise ForbiddenError("Insufficient permissions")
        return user

    return dependency
