"""
Custom exception classes and FastAPI exception handlers.

Why custom exceptions?
  The service layer raises domain-specific errors (like ConflictError or
  FileTooLargeError) without importing HTTP concepts. The handler layer then
  translates these into proper HTTP responses.

  This separation means:
    - Service code is testable without HTTP
    - Error responses are consistent across all endpoints
    - Adding new error types is straightforward

Exception hierarchy:
    KeystoneError (base)
    ├── InvalidCredentialsError     — login / password confirmation failed
    ├── ConflictError               — duplicate email or username
    ├── NotFoundError               — user or file doesn't exist
    ├── ForbiddenError              — role-hierarchy violation
    ├── TokenError
    │   ├── ExpiredTokenError       — signed token past its exp
    │   ├── InvalidTokenError       — bad signature, malformed, wrong type
    │   ├── InvalidRefreshTokenError — refresh token not the stored one
    │   └── RefreshTokenExpiredError — stored refresh expiry has passed
    ├── FileTooLargeError           — upload exceeds configured size
    ├── UnsupportedMediaTypeError   — MIME type not in allow-list
    ├── StorageBackendError         — driver failure (backend name kept internal)
    ├── UnsupportedOperationError   — driver can't perform the operation
    └── NotificationDeliveryError   — password reset mail couldn't be sent
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class KeystoneError(Exception):
    """Base exception for all Keystone domain errors."""

    status_code = 400
    error_type = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------

class InvalidCredentialsError(KeystoneError):
    """
    Raised when credentials are incorrect.

    Login uses the default message for every failure branch (unknown user,
    wrong password, inactive account) so callers can't enumerate accounts.
    """

    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(detail)


class ConflictError(KeystoneError):
    """Raised when an email or username is already taken."""

    status_code = 409
    error_type = "conflict"

    def __init__(self, detail: str = "User already exists"):
        super().__init__(detail)


class NotFoundError(KeystoneError):
    """Raised when a user or file does not exist (or is soft-deleted)."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, resource: str = "Resource"):
        self.resource = resource
        super().__init__(f"{resource} not found")


class ForbiddenError(KeystoneError):
    """Raised when the actor's role doesn't permit the operation."""

    status_code = 403
    error_type = "forbidden"

    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(detail)


class TokenError(KeystoneError):
    """Base for token verification failures. Always a 401."""

    status_code = 401
    error_type = "invalid_token"


class ExpiredTokenError(TokenError):
    error_type = "expired_token"

    def __init__(self, detail: str = "Token has expired"):
        super().__init__(detail)


class InvalidTokenError(TokenError):
    def __init__(self, detail: str = "Invalid token"):
        super().__init__(detail)


class InvalidRefreshTokenError(TokenError):
    error_type = "invalid_refresh_token"

    def __init__(self, detail: str = "Invalid refresh token"):
        super().__init__(detail)


class RefreshTokenExpiredError(TokenError):
    error_type = "refresh_token_expired"

    def __init__(self, detail: str = "Refresh token expired"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class FileTooLargeError(KeystoneError):
    """
    Raised when an upload exceeds MAX_UPLOAD_SIZE_MB.

    Attributes:
        size: The size of the rejected file in bytes.
        max_size_mb: The configured limit.
    """

    status_code = 413
    error_type = "file_too_large"

    def __init__(self, size: int, max_size_mb: float):
        self.size = size
        self.max_size_mb = max_size_mb
        super().__init__(
            f"File size exceeds maximum allowed size of {max_size_mb:g}MB"
        )


class UnsupportedMediaTypeError(KeystoneError):
    """Raised when the MIME type isn't in ALLOWED_MIME_TYPES."""

    status_code = 415
    error_type = "unsupported_media_type"

    def __init__(self, mime_type: str, allowed: list[str]):
        self.mime_type = mime_type
        self.allowed = allowed
        super().__init__(
            f"File type not allowed. Allowed types: {', '.join(allowed)}"
        )


class StorageBackendError(KeystoneError):
    """
    Raised when a storage driver operation fails.

    The backend name is stored on the exception for logging but is not part
    of `detail`, which is what clients see.
    """

    status_code = 502
    error_type = "storage_backend_error"

    def __init__(self, operation: str, backend: str | None = None):
        self.operation = operation
        self.backend = backend
        super().__init__(f"Storage {operation} failed")


class UnsupportedOperationError(KeystoneError):
    """Raised when a storage driver can't perform the requested operation."""

    status_code = 501
    error_type = "unsupported_operation"

    def __init__(self, detail: str = "Operation not supported by the storage backend"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationDeliveryError(KeystoneError):
    """Raised when a notification the caller waits on can't be delivered."""

    status_code = 503
    error_type = "notification_delivery_failure"

    def __init__(
        self,
        detail: str = "Failed to send password reset email. Please try again later.",
    ):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every KeystoneError subclass declares its own status_code and error_type,
    so a single handler produces the consistent JSON response format:
    {"detail": "error message", "error_type": "..."}

    This is called once during app startup in main.py.
    """

    @app.exception_handler(KeystoneError)
    async def keystone_error_handler(
        request: Request, exc: KeystoneError
    ) -> JSONResponse:
        headers = None
        if isinstance(exc, (TokenError, InvalidCredentialsError)):
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type},
            headers=headers,
        )
