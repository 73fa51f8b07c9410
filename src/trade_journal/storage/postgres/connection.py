"""Database engine lifecycle for the journal store.

One engine per process, created by :func:`init_engine` from
``Settings.database_url`` and torn down by :func:`dispose`.  Production
runs PostgreSQL through asyncpg with a pre-pinged pool.  SQLite through
aiosqlite (tests, single-user installs) gets no pool and has foreign keys
switched on per connection so mistake rows follow their trade.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .models import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    if make_url(url).get_backend_name() == "sqlite":
        return {"poolclass": NullPool}
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Build an engine for a ``postgresql+asyncpg`` or ``sqlite+aiosqlite`` URL."""
    engine = create_async_engine(url, echo=echo, **_engine_options(url))
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    logger.info(
        "Journal database engine ready (%s)",
        make_url(url).render_as_string(hide_password=True),
    )
    return engine


async def init_engine(
    url: str,
    *,
    echo: bool = False,
    create_tables: bool = False,
) -> AsyncEngine:
    """Install the process-wide engine.

    Parameters
    ----------
    url:
        Database URL, normally ``Settings.database_url``.
    echo:
        Log every SQL statement.
    create_tables:
        Create missing tables from the ORM metadata.  Deployed databases
        are migrated with Alembic instead.
    """
    global _engine, _sessions  # noqa: PLW0603

    if _engine is not None:
        await dispose()
    _engine = create_engine(url, echo=echo)
    _sessions = async_sessionmaker(bind=_engine, expire_on_commit=False)

    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Journal tables created where missing")
    return _engine


async def dispose() -> None:
    """Close the engine's connections; a later :func:`init_engine` starts afresh."""
    global _engine, _sessions  # noqa: PLW0603

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine not initialised; call init_engine() first")
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """One unit of work: committed when the block exits cleanly, else rolled back."""
    if _sessions is None:
        raise RuntimeError("Database engine not initialised; call init_engine() first")

    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
