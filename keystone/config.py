"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. The .env file is gitignored; secrets never live in source code.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Settings are loaded once at process start and treated as immutable afterwards.
Components receive the instance by injection (see dependencies.py) instead of
reading globals, so tests can build their own Settings.

Usage:
    from keystone.config import settings
    print(settings.STORAGE_DRIVER)
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_STORAGE_DRIVERS = ("local", "s3", "wasabi", "azure")
VALID_MAIL_DRIVERS = ("log", "smtp")


class Settings(BaseSettings):
    """
    Central configuration for the Keystone API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign access, refresh and password-reset tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # --- Application ---
    APP_NAME: str = "Keystone API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:3000"

    # --- Database ---
    # SQLite for local development; swap to a postgresql+asyncpg URL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/keystone.db"

    # --- Authentication ---
    # REQUIRED: No default — forces the operator to set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = 60

    # --- Storage ---
    STORAGE_DRIVER: str = "local"
    LOCAL_STORAGE_PATH: str = "./uploads"

    AWS_REGION: str = "us-east-1"
    AWS_S3_BUCKET: str | None = None

    WASABI_REGION: str = "us-east-1"
    WASABI_ENDPOINT: str = "https://s3.wasabisys.com"
    WASABI_BUCKET: str | None = None
    WASABI_ACCESS_KEY_ID: str | None = None
    WASABI_SECRET_ACCESS_KEY: str | None = None

    AZURE_STORAGE_ACCOUNT: str | None = None
    AZURE_STORAGE_KEY: str | None = None
    AZURE_CONTAINER_NAME: str | None = None

    MAX_UPLOAD_SIZE_MB: float = 8
    # Comma-separated list, e.g. "image/jpeg,image/png"
    ALLOWED_MIME_TYPES: str = "image/jpeg,image/png,image/webp,image/heic"
    ORPHANED_FILES_RETENTION_DAYS: int = 30
    UPLOAD_CONCURRENCY: int = 4

    # --- Notifications ---
    # "log" writes notifications to the application log (development default)
    MAIL_DRIVER: str = "log"
    MAIL_FROM: str = "no-reply@keystone.local"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("SECRET_KEY must be set and non-empty")
        return v

    @field_validator(
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "REFRESH_TOKEN_EXPIRE_MINUTES",
        "PASSWORD_RESET_TOKEN_EXPIRE_MINUTES",
        "ORPHANED_FILES_RETENTION_DAYS",
        "UPLOAD_CONCURRENCY",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("MAX_UPLOAD_SIZE_MB")
    @classmethod
    def validate_max_upload_size(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("MAX_UPLOAD_SIZE_MB must be greater than 0")
        return v

    @field_validator("STORAGE_DRIVER")
    @classmethod
    def validate_storage_driver(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_STORAGE_DRIVERS:
            raise ValueError(
                f"STORAGE_DRIVER must be one of: {', '.join(VALID_STORAGE_DRIVERS)}"
            )
        return v

    @field_validator("MAIL_DRIVER")
    @classmethod
    def validate_mail_driver(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_MAIL_DRIVERS:
            raise ValueError(
                f"MAIL_DRIVER must be one of: {', '.join(VALID_MAIL_DRIVERS)}"
            )
        return v

    @property
    def allowed_mime_types(self) -> frozenset[str]:
        """ALLOWED_MIME_TYPES parsed into a set (blank entries dropped)."""
        return frozenset(
            t.strip() for t in self.ALLOWED_MIME_TYPES.split(",") if t.strip()
        )

    @property
    def max_upload_size_bytes(self) -> int:
        return int(self.MAX_UPLOAD_SIZE_MB * 1024 * 1024)


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
