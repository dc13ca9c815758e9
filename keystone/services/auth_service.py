"""
Authentication service — login, signup, refresh, logout and password reset.

This module contains the core auth logic, separated from HTTP concerns.
The router calls these methods and translates the results into HTTP
responses, so the business logic can be tested without a web server.

Login flow:
  1. Resolve the identifier as email OR username (first match)
  2. Verify password against the stored hash
  3. Issue a token pair, stamp last_login_at, store the new refresh token

Signup flow:
  1. Reject if the email OR username is taken
  2. Hash the password and create the user
  3. Issue a token pair and store the refresh token
  4. Once the router has committed the user, send_welcome() schedules the
     welcome notification (best effort, never blocks signup)

Refresh flow:
  The router has already verified the presented refresh token (signature,
  stored value, stored expiry). refresh() mints a new pair and swaps the stored
  value with a compare-and-set, so of two concurrent refreshes presenting the
  same token exactly one wins; the other gets InvalidRefreshTokenError.

Security notes:
  - Login returns the same error for "unknown user", "wrong password" and
    "inactive user" to prevent user enumeration.
  - Password reset requests return the same message whether or not the
    account exists.
  - The stored refresh expiry is a fixed 7-day window (REFRESH_TOKEN_STORE_DAYS),
    independent of REFRESH_TOKEN_EXPIRE_MINUTES used to sign the token. With a
    signed TTL shorter than 7 days the signature check ends the chain first;
    with a longer one the stored window does.
"""

import logging
import uuid
from datetime import timedelta

from keystone.config import Settings
from keystone.exceptions import (
    ConflictError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    NotFoundError,
    NotificationDeliveryError,
)
from keystone.models.user import User
from keystone.notifications import BackgroundNotifier, NotificationSender
from keystone.rbac import UserRole
from keystone.security import hash_password, verify_password_or_fail
from keystone.services.token_service import TokenPair, TokenService
from keystone.stores.user_store import ANY_TOKEN, UserStore

logger = logging.getLogger(__name__)

REFRESH_TOKEN_STORE_DAYS = 7

INVALID_CREDENTIALS_MESSAGE = "Invalid username, email or password"
PASSWORD_RESET_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)


class AuthService:
    def __init__(
        self,
        users: UserStore,
        tokens: TokenService,
        notifier: BackgroundNotifier,
        sender: NotificationSender,
        settings: Settings,
    ):
        self.users = users
        self.tokens = tokens
        self.notifier = notifier
        self.sender = sender
        self.settings = settings

    async def _rotate(
        self,
        user: User,
        expected_token=ANY_TOKEN,
    ) -> TokenPair:
        """Issue a pair and store its refresh token with the fixed stored expiry."""
        pair = self.tokens.issue_pair(user.id, user.username)
        stored_expiry = self.tokens.now() + timedelta(days=REFRESH_TOKEN_STORE_DAYS)
        updated = await self.users.update_refresh_state(
            user.id,
            pair.refresh_token,
            stored_expiry,
            expected_token=expected_token,
        )
        if not updated:
            raise InvalidRefreshTokenError()
        return pair

    async def login(self, identifier: str, password: str) -> tuple[User, TokenPair]:
        """
        Authenticate by email or username.

        Raises:
            InvalidCredentialsError: Same message for every failure branch.
        """
        user = await self.users.find_by_email_or_username(identifier, identifier)

        if user is None:
            raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

        verify_password_or_fail(password, user.hashed_password, INVALID_CREDENTIALS_MESSAGE)

        if not user.is_active:
            raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

        pair = await self._rotate(user)
        await self.users.update_last_login(user, self.tokens.now())
        logger.info("User %s logged in", user.id)
        return user, pair

    async def signup(
        self,
        email: str,
        username: str,
        password: str,
    ) -> tuple[User, TokenPair]:
        """
        Register a new user and log them in.

        Raises:
            ConflictError: If the email or username is already registered.
        """
        existing = await self.users.find_by_email_or_username(email, username)
        if existing is not None:
            raise ConflictError("User already exists")

        user = await self.users.create(
            User(
                email=email,
                username=username,
                hashed_password=hash_password(password),
                role=UserRole.USER,
                last_login_at=self.tokens.now(),
            )
        )
        pair = await self._rotate(user)
        logger.info("User %s signed up", user.id)
        return user, pair

    def send_welcome(self, user: User) -> None:
        """Schedule the welcome notification. Call once the new user is committed."""
        self.notifier.send_welcome(
            user.email,
            {
                "name": user.username,
                "dashboard_url": f"{self.settings.FRONTEND_URL}/dashboard",
            },
        )

    async def request_password_reset(self, email: str) -> dict[str, str]:
        """
        Send a password reset link if the account exists.

        The response is identical either way. Only when the account exists and
        the mail can't be sent does the caller see an error, so they can retry.

        Raises:
            NotificationDeliveryError: The reset mail couldn't be delivered.
        """
        user = await self.users.find_by_email(email)
        if user is None:
            return {"message": PASSWORD_RESET_MESSAGE}

        reset_token = self.tokens.issue_password_reset(user.id)
        reset_link = f"{self.settings.FRONTEND_URL}/reset-password?token={reset_token}"
        try:
            await self.sender.send_password_reset(
                user.email,
                {"name": user.username, "reset_link": reset_link},
            )
        except Exception as e:
            logger.exception("Failed to send password reset notification to %s", email)
            raise NotificationDeliveryError() from e

        return {"message": PASSWORD_RESET_MESSAGE}

    async def reset_password(self, token: str, new_password: str) -> dict[str, str]:
        """
        Complete a password reset.

        Also clears the stored refresh token so every existing session chain
        ends with the old password.

        Raises:
            ExpiredTokenError / InvalidTokenError: Bad reset token.
            NotFoundError: The user no longer exists.
        """
        user_id = self.tokens.verify_password_reset(token)
        user = await self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User")
        await self.users.update_password(user, hash_password(new_password))
        logger.info("Password reset for user %s", user.id)
        return {"message": "Password has been reset successfully"}

    async def refresh(
        self,
        user_id: uuid.UUID,
        presented_refresh_token: str | None = None,
    ) -> TokenPair:
        """
        Re-issue both tokens and rotate the stored refresh token.

        Args:
            user_id: A user whose refresh token was already verified.
            presented_refresh_token: When given, the rotation only succeeds if
                this is still the stored value.

        Raises:
            NotFoundError: Unknown user.
            InvalidRefreshTokenError: Another rotation replaced the token first.
        """
        user = await self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User")

        expected = ANY_TOKEN if presented_refresh_token is None else presented_refresh_token
        return await self._rotate(user, expected_token=expected)

    async def logout(self, user_id: uuid.UUID) -> dict[str, str]:
        """Clear the stored refresh state, ending the rotation chain."""
        await self.users.update_refresh_state(user_id, None, None)
        logger.info("User %s logged out", user_id)
        return {"message": "Logged out successfully"}

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending welcome notifications."""
        await self.notifier.drain()
