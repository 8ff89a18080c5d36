"""
Database handle, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - Database: owns the async engine and the session factory. It is
    constructed explicitly (application lifespan, tests, scripts), handed
    to whatever needs it, and disposed on shutdown. There is no
    process-wide connection.
  - Base: Declarative base class that all ORM models inherit from
  - get_database() / get_db(): FastAPI dependencies for the handle and a
    per-request session

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success and rolls back on exception. The transfer engine does NOT use
  the request session: it opens its own session per attempt so that it
  alone decides when its unit of work commits, rolls back or retries.

SQLite note:
  pysqlite only emits BEGIN before the first INSERT/UPDATE/DELETE, so plain
  reads take no lasting lock. Writers queue on SQLite's single writer lock
  for up to SQLITE_BUSY_TIMEOUT_SECONDS before failing with
  "database is locked".
"""

from collections.abc import AsyncIterator

from fastapi import Request
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from wallet.config import settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class, which provides metadata tracking
    for table creation and migrations.
    """
    pass


class Database:
    """
    Explicitly owned connection handle.

    Usage:
        database = Database("sqlite+aiosqlite:///./data/wallet.db")
        await database.create_all()
        async with database.session() as session:
            ...
        await database.dispose()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        connect_args = {}
        if make_url(url).get_backend_name() == "sqlite":
            connect_args["timeout"] = settings.SQLITE_BUSY_TIMEOUT_SECONDS

        # echo=True logs all SQL statements.
        self.engine: AsyncEngine = create_async_engine(
            url,
            echo=echo,
            connect_args=connect_args,
        )

        # expire_on_commit=False prevents lazy-load errors after commit;
        # attributes on committed objects stay readable in async context.
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        """Create a new session; use it as an async context manager."""
        return self.session_factory()

    async def create_all(self) -> None:
        """Create all tables that don't exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection. The handle is unusable afterwards."""
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the handle created in the app lifespan."""
    return request.app.state.database


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    The session is committed on success and rolled back on any exception,
    then closed when the request completes.
    """
    database = get_database(request)
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
