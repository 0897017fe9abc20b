"""Async SQLAlchemy store handle.

One ``Database`` is constructed at process start and passed to every
component that touches the store; nothing in the package reaches for a
module-level engine. Provides:
    * Database.session()      plain session, caller controls commit
    * Database.transaction()  session inside BEGIN/COMMIT, optional isolation level
    * Database.init_schema()  create_all / drop_all for tests and bootstrap
    * is_transient_error()    classifies retryable store failures
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..domain.models import Base

logger = logging.getLogger(__name__)


# =====================================================
# 🔧 Static configuration
# =====================================================
DATABASE_URL_ENV = "DATABASE_URL"
DEFAULT_URL = "postgresql+asyncpg://fitslot:change_me@db:5432/fitslot"

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


# =====================================================
# ⚙️ Engine / Session factory
# =====================================================
def _configure_sqlite(engine: AsyncEngine) -> None:
    """Make SQLite take the write lock at BEGIN so transactions serialize."""

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        # disable the driver's own BEGIN handling; we emit ours below
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _make_engine(url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async engine."""
    engine = create_async_engine(url, echo=False, **kwargs)
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


class Database:
    """Explicitly constructed store handle shared read-only across requests."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self.url = url
        self.engine: AsyncEngine = _make_engine(url, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a new AsyncSession."""
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.close()

    @asynccontextmanager
    async def transaction(self, isolation_level: str | None = None) -> AsyncIterator[AsyncSession]:
        """Session inside a single transaction; commits on exit, rolls back on error."""
        async with self.session_factory() as session:
            async with session.begin():
                if isolation_level and self.dialect_name != "sqlite":
                    await session.connection(execution_options={"isolation_level": isolation_level})
                yield session

    # =====================================================
    # 🧩 Schema helpers
    # =====================================================
    async def init_schema(
        self, force: bool = False, on_create: Callable[[AsyncEngine], None] | None = None
    ) -> None:
        """Create database schema."""
        async with self.engine.begin() as conn:
            if force:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        if on_create:
            on_create(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()


def is_transient_error(exc: BaseException) -> bool:
    """True when a failed statement may succeed if the transaction is retried."""
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc).lower()


__all__ = [
    "Database",
    "DATABASE_URL_ENV",
    "DEFAULT_URL",
    "is_transient_error",
    "_make_engine",
]
