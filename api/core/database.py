"""Database engine, session factory, and pool management.

The engine's connection pool is the only state shared between concurrent
requests. Repositories receive the session factory and open one short
transaction per operation.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import QueuePool

from core.config import Settings
from core.logger import get_logger

logger = get_logger(__name__)

# Connection execution option marking a transaction that will write
WRITE_OPTION = "users_api_write"


class Base(DeclarativeBase):
    pass


def configure_sqlite(engine: AsyncEngine) -> None:
    """Foreign keys on, and write transactions that take the lock up front.

    With the driver's deferred BEGIN, two concurrent writers can deadlock
    and one gets "database is locked". Transactions opened through
    write_transaction() use BEGIN IMMEDIATE, so the second writer waits for
    the first to commit and a duplicate insert fails with an IntegrityError
    instead. Reads keep a plain BEGIN.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        if conn.get_execution_options().get(WRITE_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def _setup_pool_event_listeners(engine: AsyncEngine) -> None:
    pool = engine.sync_engine.pool

    @event.listens_for(pool, "checkout")
    def _on_checkout(dbapi_conn, connection_record, connection_proxy):
        if isinstance(pool, QueuePool) and pool.overflow() > 0:
            logger.warning(
                "db.pool.overflow",
                db_pool_checked_out=pool.checkedout(),
                db_pool_size=pool.size(),
                db_pool_overflow_count=pool.overflow(),
            )


def create_engine(settings: Settings) -> AsyncEngine:
    engine_kwargs: dict = {"echo": settings.db_echo}

    if not settings.is_sqlite:
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_pool_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=False,
            # Server-side guard in case a client deadline is lost
            connect_args={
                "server_settings": {
                    "statement_timeout": str(
                        int(settings.request_timeout_seconds * 1000)
                    )
                }
            },
        )

    engine = create_async_engine(settings.database_url, **engine_kwargs)

    if settings.is_sqlite:
        configure_sqlite(engine)
    else:
        _setup_pool_event_listeners(engine)

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def write_transaction(
    sessions: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session whose transaction is tagged as a write, commit on exit.

    Same as ``sessions.begin()``, except that SQLite takes the write lock
    when the transaction starts. Other backends ignore the tag.
    """
    async with sessions.begin() as session:
        await session.connection(execution_options={WRITE_OPTION: True})
        yield session


async def init_db(engine: AsyncEngine, *, create_schema: bool = False) -> None:
    """Verify database is reachable; optionally create missing tables."""
    logger.info("db.connectivity.verifying")

    async with asyncio.timeout(30):
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.rollback()
    logger.info("db.connectivity.verified")

    if create_schema:
        # Import registers the mapped tables on Base.metadata
        import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("db.schema.created")


async def dispose_engine(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("db.engine.disposed")


async def check_db_connection(engine: AsyncEngine, timeout: float = 30) -> None:
    """Verify database is reachable."""
    async with asyncio.timeout(timeout):
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.rollback()
