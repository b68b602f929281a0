"""Async SQLAlchemy engine, session factory and FastAPI session dependency.

Tables are grouped into PostgreSQL schemas by logical area. SQLite (used by
the test-suite) has no schemas, so they are translated away there.
"""

import logging
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from sitedata.config import settings

logger = logging.getLogger(__name__)

SCHEMA_NAMESPACES = ("core", "config", "data", "ml")


class Base(DeclarativeBase):
    pass


def _on_sqlite_connect(dbapi_conn, connection_record):
    """Enable foreign key enforcement and hand transaction control to SQLAlchemy."""
    # The driver's implicit BEGIN breaks SAVEPOINT handling.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn):
    # SQLite locks the whole database file; take the write lock up front so
    # concurrent writers queue on the busy timeout instead of failing mid-transaction.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine for ``url``.

    On SQLite the logical-area schemas are mapped to the default schema and
    foreign keys are switched on so cascades behave as on PostgreSQL.
    """
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        engine = create_async_engine(
            url,
            execution_options={
                "schema_translate_map": {name: None for name in SCHEMA_NAMESPACES}
            },
            **kwargs,
        )
        event.listen(engine.sync_engine, "connect", _on_sqlite_connect)
        event.listen(engine.sync_engine, "begin", _on_sqlite_begin)
        return engine

    kwargs.setdefault("pool_size", settings.DB_POOL_SIZE)
    kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.POSTGRES_URL, echo=settings.DB_ECHO)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_pg_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session; commits on success, rolls back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
