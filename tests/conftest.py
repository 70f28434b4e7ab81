"""
Shared fixtures.

Tests run against in-memory SQLite unless TEST_DATABASE=postgres, in which case
a throwaway PostgreSQL container is started once per session. Either way each
test works inside one outer transaction that is rolled back at the end.
"""
import os
from collections.abc import AsyncGenerator, Generator

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from testcontainers.postgres import PostgresContainer

SQLITE_URL = "sqlite+aiosqlite:///:memory:"

# Schemas and services read Settings lazily; give them something valid to load.
os.environ.setdefault("DATABASE_URL", SQLITE_URL)

from core.config import get_settings  # noqa: E402
from db.session import create_engine_for  # noqa: E402
from models import Base  # noqa: E402


@pytest.fixture(scope="session")
def database_url() -> Generator[str]:
    """URL of the database under test."""
    if os.environ.get("TEST_DATABASE", "sqlite").lower() != "postgres":
        yield SQLITE_URL
        return

    with PostgresContainer("postgres:16", driver="asyncpg") as postgres:
        url = postgres.get_connection_url()
        os.environ["DATABASE_URL"] = url
        get_settings.cache_clear()
        yield url


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Engine with every table created. In-memory SQLite starts empty for each test."""
    engine = create_engine_for(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """Connection holding the outer transaction; nothing a test writes survives it."""
    async with async_engine.connect() as connection:
        outer = await connection.begin()
        try:
            yield connection
        finally:
            await outer.rollback()


@pytest.fixture
async def db_session(db_connection: AsyncConnection) -> AsyncGenerator[AsyncSession]:
    """
    Session joined to the outer transaction.

    Session-level commits and begin_nested() blocks become SAVEPOINTs, so services
    behave as in production while the test still rolls everything back.
    """
    factory = async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    async with factory() as session:
        yield session
