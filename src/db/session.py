"""Async SQLAlchemy session factory."""
from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from core.config import get_settings
from services.blob_cleanup import discard_pending_blob_deletes, run_pending_blob_deletes
from services.exceptions import translate_storage_errors


def configure_sqlite_engine(engine: AsyncEngine) -> None:
    """
    Make SQLite behave like the production database for our purposes.

    - foreign keys are enforced (needed for ON DELETE CASCADE / RESTRICT)
    - transactions are started explicitly so SAVEPOINTs work with the pysqlite driver
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001, ARG001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")


def create_engine_for(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async engine, applying SQLite adjustments when needed."""
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            kwargs.setdefault("poolclass", StaticPool)
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_async_engine(database_url, echo=False, **kwargs)
        configure_sqlite_engine(engine)
        return engine

    settings = get_settings()
    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_size", settings.db_pool_size)
    kwargs.setdefault("max_overflow", settings.db_max_overflow)
    return create_async_engine(database_url, echo=False, **kwargs)


@lru_cache
def get_engine() -> AsyncEngine:
    """Get the process-wide engine for the configured database."""
    return create_engine_for(get_settings().database_url)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the process-wide engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


@translate_storage_errors
async def _commit(session: AsyncSession) -> None:
    await session.commit()


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Yield an async database session.

    Uses unit-of-work pattern: services use flush() for refreshing objects,
    commit happens once here at the end of the unit of work. This ensures atomic
    transactions - if anything fails, all changes are rolled back.

    Snapshot blobs queued for deletion are removed only after the commit succeeds.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await _commit(session)
        except Exception:
            await session.rollback()
            discard_pending_blob_deletes(session)
            raise
        await run_pending_blob_deletes(session)
