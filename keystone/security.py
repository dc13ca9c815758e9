"""
Password hashing.

Passwords are never stored in plaintext. Argon2 (winner of the Password
Hashing Competition, 2015) is memory-hard and time-hard, so each hash costs a
fixed amount of work regardless of the input. passlib's CryptContext gives us
salted, self-describing hashes and constant-time verification.

Token signing lives in keystone.services.token_service.
"""

from passlib.context import CryptContext

from keystone.exceptions import InvalidCredentialsError


# If the scheme ever changes, passlib verifies old hashes with the original
# scheme and flags them for rehash ("deprecated='auto'").
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Args:
        plain_password: The user's raw password input.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=3,p=4$...").
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a stored Argon2 hash.

    Malformed or unknown hash formats count as a mismatch.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def verify_password_or_fail(
    plain_password: str,
    hashed_password: str,
    message: str = "Invalid credentials",
) -> bool:
    """
    Verify a password, raising on mismatch.

    Login passes the uniform credentials message; the profile password change
    passes its own ("Current password is incorrect").

    Raises:
        InvalidCredentialsError: With `message`, if the password doesn't match.
    """
    if not verify_password(plain_password, hashed_password):
        raise InvalidCredentialsError(message)
    return True
