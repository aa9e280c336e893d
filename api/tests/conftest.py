"""Pytest configuration and shared fixtures.

This module provides:
- In-memory SQLite database (aiosqlite + StaticPool) with fresh tables per test
- File-backed SQLite database for tests that need concurrent connections
- Repository / service / request-context fixtures for layer tests
- FastAPI app and httpx test client for route tests
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers tables on Base.metadata)
from core.config import Settings, clear_settings_cache
from core.context import RequestContext
from core.database import (
    Base,
    configure_sqlite,
    create_engine,
    create_session_maker,
)
from repositories.user_repository import UserRepository
from services.users_service import UserService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        request_timeout_seconds=5.0,
        debug=True,
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Create a fresh in-memory database engine for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    configure_sqlite(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def file_db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """A file-backed SQLite database, so concurrent sessions get their own connections."""
    engine = create_engine(
        Settings(database_url=f"sqlite+aiosqlite:///{tmp_path}/users.db")
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(test_engine)


@pytest.fixture
def user_repository(
    session_maker: async_sessionmaker[AsyncSession],
) -> UserRepository:
    return UserRepository(session_maker)


@pytest.fixture
def user_service(user_repository: UserRepository) -> UserService:
    return UserService(user_repository)


@pytest.fixture
def ctx() -> RequestContext:
    """A request context with a comfortable deadline."""
    return RequestContext.new(timeout=5.0, trace_id="test-trace")


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings, test_engine: AsyncEngine) -> FastAPI:
    """FastAPI app wired to the test database.

    httpx's ASGITransport does not run the lifespan, so the startup flags
    are set here.
    """
    from main import create_app

    fastapi_app = create_app(test_settings, engine=test_engine)
    fastapi_app.state.init_done = True
    fastapi_app.state.init_error = None
    return fastapi_app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for testing routes."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# =============================================================================
# Utility Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reset settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
