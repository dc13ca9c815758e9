"""
Test fixtures for the Keystone API test suite.

This module provides shared fixtures used across all test files:

  - settings: A Settings instance built for tests (tmp storage path)
  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - sender: Notification sender that records instead of sending
  - app / client: The application built with create_app() and an async
    HTTP test client (unauthenticated)
  - make_client: Factory for additional clients (one per simulated user)
  - register: Sign up a user through the API and return its tokens
  - set_role: Change a user's role directly in the database

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database — no state leaks between tests.
  - We override FastAPI's get_db dependency to inject our test sessions,
    so the application code works exactly as it does in production.
  - Privileged users are created by signing up normally and then updating
    the role in the DB, the same way an operator provisions the first OWNER.
"""

import os

# Settings() is instantiated at import time; it needs a secret.
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import update  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

import keystone.models  # noqa: E402,F401
from keystone.config import Settings  # noqa: E402
from keystone.database import Base, get_db  # noqa: E402
from keystone.main import create_app  # noqa: E402
from keystone.models.user import User  # noqa: E402
from keystone.rbac import UserRole  # noqa: E402
from keystone.storage.local import LocalStorageDriver  # noqa: E402
from tests.fakes import RecordingSender  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

DEFAULT_PASSWORD = "SecurePass123!"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SECRET_KEY="test-secret-key-not-for-production",
        DATABASE_URL=TEST_DATABASE_URL,
        LOCAL_STORAGE_PATH=str(tmp_path / "uploads"),
        FRONTEND_URL="http://frontend.test",
        _env_file=None,
    )


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def storage_driver(settings):
    return LocalStorageDriver(settings.LOCAL_STORAGE_PATH)


@pytest.fixture
def app(settings, session_factory, storage_driver, sender):
    """
    The application with the test database injected.

    This overrides the get_db dependency so all requests hit the
    in-memory test database instead of the real one.
    """
    application = create_app(
        settings=settings,
        storage_driver=storage_driver,
        notification_sender=sender,
    )

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_client(app):
    """Factory for independent clients sharing one app and database."""
    clients: list[AsyncClient] = []

    async def factory() -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield factory

    for ac in clients:
        await ac.aclose()
    await app.state.notifier.drain()


@pytest_asyncio.fixture
async def client(make_client):
    """Async HTTP test client (unauthenticated)."""
    return await make_client()


@pytest.fixture
def register(client):
    """
    Sign up a user through the real signup endpoint.

    Returns the response JSON (user_id, access_token, refresh_token).
    """

    async def _register(
        username: str,
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
    ) -> dict:
        response = await client.post(
            "/auth/signup",
            json={
                "email": email or f"{username}@example.com",
                "username": username,
                "password": password,
            },
        )
        assert response.status_code == 201, f"Signup failed: {response.text}"
        return response.json()

    return _register


@pytest.fixture
def set_role(session_factory):
    """Change a user's role directly in the database."""

    async def _set_role(username: str, role: UserRole) -> None:
        async with session_factory() as session:
            await session.execute(
                update(User).where(User.username == username).values(role=role)
            )
            await session.commit()

    return _set_role


@pytest.fixture
def user_client(make_client, register, set_role):
    """
    Factory: a client authenticated as a fresh user holding `role`.

    Roles are read from the database on every request, so the access token
    issued at signup keeps working after the role update.
    """

    async def _user_client(username: str, role: UserRole = UserRole.USER) -> AsyncClient:
        tokens = await register(username)
        if role != UserRole.USER:
            await set_role(username, role)
        ac = await make_client()
        ac.headers["Authorization"] = f"Bearer {tokens['access_token']}"
        ac.user_id = tokens["user_id"]
        return ac

    return _user_client
