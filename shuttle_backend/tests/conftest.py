"""
Shared pytest configuration for backend tests.

Tests run against SQLite (aiosqlite) in a temporary file by default. Set
TEST_DATABASE_URL to run the same suite against PostgreSQL.

SAFETY: This module REFUSES to run against any database whose name does not
contain the substring "test". Tables are created and dropped for every test,
so pointing the suite at a real database would destroy its data.
"""

import os
import tempfile

os.environ.setdefault("ENV", "test")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")

import asyncio  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from shuttle_backend.database.db import Base  # noqa: E402


def _resolve_test_database_url() -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if the resolved URL does not point to a database
    whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        path = os.path.join(tempfile.gettempdir(), f"shuttle_test_{os.getpid()}.db")
        url = f"sqlite+aiosqlite:///{path}"

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"{'=' * 70}"
        )

    return url


TEST_DATABASE_URL = _resolve_test_database_url()
IS_SQLITE = TEST_DATABASE_URL.startswith("sqlite")


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine with a fresh schema for one test."""
    # NullPool: every operation gets its own connection, so concurrent
    # transactions in a test really are separate connections
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30} if IS_SQLITE else {},
    )

    async with engine.begin() as conn:
        from shuttle_backend.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Point db.run_transaction / get_db_session at the test engine
    from shuttle_backend.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local

    await asyncio.sleep(0.05)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """
    Database session for a test.

    Service calls made through this session share its transaction; commit
    before exercising db.run_transaction so other connections see the rows.
    """
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()
