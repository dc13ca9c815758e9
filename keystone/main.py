"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — creates tables on startup; drains pending
     notifications and disposes the engine on shutdown
  2. Process-wide components on app.state — settings, token service,
     storage driver, notification sender, background notifier
  3. Exception handlers — maps domain errors to HTTP responses
  4. Router registration — /auth, /users, /storage

Running locally:
    uvicorn keystone.main:app --reload

Tests call create_app() with their own settings, driver and sender instead
of using the module-level `app`.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from keystone.config import Settings, settings as default_settings
from keystone.database import Base, engine
from keystone.exceptions import register_exception_handlers
from keystone.logging_config import configure_logging
from keystone.notifications import (
    BackgroundNotifier,
    NotificationSender,
    build_notification_sender,
)
from keystone.routers import auth, storage, users
from keystone.services.token_service import TokenService
from keystone.storage import StorageDriver, build_storage_driver

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Creates all database tables if they don't exist.

    Shutdown:
      Waits for queued welcome notifications, then disposes of the engine.
    """
    # --- Startup ---
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Keystone started (storage driver: %s)", app.state.storage_driver.name
    )
    yield
    # --- Shutdown ---
    await app.state.notifier.drain()
    await engine.dispose()


def create_app(
    settings: Settings | None = None,
    storage_driver: StorageDriver | None = None,
    notification_sender: NotificationSender | None = None,
    token_service: TokenService | None = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Authentication, role-based access control and file storage API",
        lifespan=lifespan,
    )

    sender = notification_sender or build_notification_sender(settings)
    app.state.settings = settings
    app.state.token_service = token_service or TokenService.from_settings(settings)
    app.state.storage_driver = storage_driver or build_storage_driver(settings)
    app.state.notification_sender = sender
    app.state.notifier = BackgroundNotifier(sender)

    register_exception_handlers(app)

    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(users.router, prefix="/users", tags=["Users"])
    app.include_router(storage.router, prefix="/storage", tags=["Storage"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for deployment probes."""
        return {
            "status": "ok",
            "version": settings.APP_VERSION,
            "storage_driver": app.state.storage_driver.name,
        }

    return app


app = create_app()
