"""
Token service — signing and verification of access, refresh and reset tokens.

Three token types share one signing key and are told apart by a "type" claim,
so a refresh token can never be replayed as an access token (or vice versa):

  - access:          short-lived, stateless. Verified by signature + expiry only.
  - refresh:         longer-lived, stateful. Besides signature + expiry, the
                     presented value must equal the one stored on the User row
                     (single valid value per user, see verify_refresh).
  - password-reset:  single-purpose, short-lived, carries only the user id.

Every token also gets a random "jti" so two tokens minted for the same user in
the same second are still distinct values.

Expiry is checked here against the injected clock rather than by the JWT
library: a token issued at t0 with TTL T verifies for t in [t0, t0+T) and is
rejected for t >= t0+T. "exp" is written as a float NumericDate to keep that
boundary exact.

This service never persists anything; AuthService writes the refresh token and
its stored expiry onto the User row as part of the same unit of work.
"""

import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from jose import JWTError, jwt

from keystone.config import Settings
from keystone.exceptions import (
    ExpiredTokenError,
    InvalidRefreshTokenError,
    InvalidTokenError,
    RefreshTokenExpiredError,
)

ACCESS = "access"
REFRESH = "refresh"
PASSWORD_RESET = "password-reset"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by access and refresh tokens."""
    user_id: uuid.UUID
    username: str


class TokenService:
    """Signs and verifies JWTs with python-jose (HS256 by default)."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        password_reset_ttl: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
    ):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.password_reset_ttl = password_reset_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenService":
        return cls(
            secret_key=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES),
            password_reset_ttl=timedelta(
                minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES
            ),
            clock=clock,
        )

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------

    def _sign(self, claims: dict[str, Any], token_type: str, ttl: timedelta) -> str:
        issued_at = self.now()
        payload = {
            **claims,
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": int(issued_at.timestamp()),
            "exp": (issued_at + ttl).timestamp(),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue_pair(
        self,
        user_id: uuid.UUID,
        username: str,
        access_ttl: timedelta | None = None,
        refresh_ttl: timedelta | None = None,
    ) -> TokenPair:
        """
        Sign a fresh access + refresh token pair for a user.

        Args:
            user_id: Goes into the standard "sub" claim.
            username: Carried alongside for display / logging by consumers.
            access_ttl: Override for the configured access TTL.
            refresh_ttl: Override for the configured refresh TTL.
        """
        if access_ttl is None:
            access_ttl = self.access_ttl
        if refresh_ttl is None:
            refresh_ttl = self.refresh_ttl
        claims = {"sub": str(user_id), "username": username}
        return TokenPair(
            access_token=self._sign(claims, ACCESS, access_ttl),
            refresh_token=self._sign(claims, REFRESH, refresh_ttl),
        )

    def issue_password_reset(self, user_id: uuid.UUID) -> str:
        return self._sign({"sub": str(user_id)}, PASSWORD_RESET, self.password_reset_ttl)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _decode(self, token: str, expected_type: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise InvalidTokenError() from e

        if payload.get("type") != expected_type:
            raise InvalidTokenError()

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise InvalidTokenError()
        if self.now().timestamp() >= exp:
            raise ExpiredTokenError()
        return payload

    @staticmethod
    def _subject(payload: dict[str, Any]) -> uuid.UUID:
        try:
            return uuid.UUID(str(payload["sub"]))
        except (KeyError, ValueError) as e:
            raise InvalidTokenError() from e

    def _claims(self, payload: dict[str, Any]) -> TokenClaims:
        username = payload.get("username")
        if not isinstance(username, str):
            raise InvalidTokenError()
        return TokenClaims(user_id=self._subject(payload), username=username)

    def verify_access(self, token: str) -> TokenClaims:
        """
        Verify an access token.

        Raises:
            ExpiredTokenError: The token's TTL has elapsed.
            InvalidTokenError: Bad signature, malformed, or not an access token.
        """
        return self._claims(self._decode(token, ACCESS))

    def decode_refresh(self, token: str) -> TokenClaims:
        """Signature + expiry + type check for a refresh token (stateless half)."""
        return self._claims(self._decode(token, REFRESH))

    def verify_refresh(
        self,
        token: str,
        stored_token: str | None,
        stored_expiry: datetime | None,
        now: datetime | None = None,
    ) -> None:
        """
        Check a presented refresh token against the user's stored rotation state.

        Only the most recently issued refresh token validates. The stored
        expiry is the server-side window written at login/signup/refresh.

        Raises:
            InvalidRefreshTokenError: No stored token, or it differs.
            RefreshTokenExpiredError: now > stored_expiry.
        """
        if not stored_token or not hmac.compare_digest(
            token.encode("utf-8"), stored_token.encode("utf-8")
        ):
            raise InvalidRefreshTokenError()

        current = as_utc(now) if now is not None else self.now()
        if stored_expiry is not None and current > as_utc(stored_expiry):
            raise RefreshTokenExpiredError()

    def verify_password_reset(self, token: str) -> uuid.UUID:
        """Return the user id from a valid password-reset token."""
        return self._subject(self._decode(token, PASSWORD_RESET))
