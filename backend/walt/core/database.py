"""Database engine and session configuration.

SQLite (file-backed, WAL journal) is the reference deployment; any async
SQLAlchemy dialect works unchanged.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from walt.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def utcnow() -> datetime:
    """Timezone-aware current UTC time, used for timestamp column defaults."""
    return datetime.now(timezone.utc)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_transaction(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite connections get WAL journaling, foreign key enforcement and
    transactions begun by SQLAlchemy so that nested savepoints behave.

    Args:
        database_url: SQLAlchemy async database URL
        echo: Log emitted SQL

    Returns:
        AsyncEngine instance
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        engine = create_async_engine(database_url, echo=echo)
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
        event.listen(engine.sync_engine, "begin", _begin_sqlite_transaction)
        return engine

    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
async_session_maker = create_session_maker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session, committing on success and rolling back on error."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create all tables registered on the metadata.

    Used by tests and local development; deployments run the Alembic
    migrations instead.
    """
    # Import models so they register on Base.metadata
    import walt.models  # noqa: F401

    ensure_sqlite_directory(bind.url.render_as_string(hide_password=False))
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
