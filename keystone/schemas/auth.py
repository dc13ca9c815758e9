"""
Pydantic schemas for authentication endpoints.

These schemas define the request/response contracts for the auth API.
Pydantic validates incoming data automatically — if a required field is
missing or the wrong type, FastAPI returns a 422 error before our code
even runs.
"""

import uuid

from pydantic import BaseModel, EmailStr, Field


class SignupRequest(BaseModel):
    """Request body for POST /auth/signup."""
    email: EmailStr
    username: str = Field(min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login. `identifier` is an email or a username."""
    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /auth/forgot-password."""
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""
    token: str
    new_password: str = Field(min_length=8, max_length=128)


class TokenPairResponse(BaseModel):
    """Response body for login/signup/refresh."""
    user_id: uuid.UUID
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str
