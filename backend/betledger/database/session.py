"""
Database engine and session management.
Provides the async engine and session factory used by SqlLedgerStore.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

SYNC_TO_ASYNC_PREFIXES = (
    ("postgresql+psycopg2://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("sqlite+pysqlite://", "sqlite+aiosqlite://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)


def to_async_url(url: str) -> str:
    """Convert sync driver URLs to their async counterparts."""
    for sync_prefix, async_prefix in SYNC_TO_ASYNC_PREFIXES:
        if url.startswith(sync_prefix):
            return async_prefix + url[len(sync_prefix):]
    return url


def create_engine(url: str) -> AsyncEngine:
    """Create an async engine. In-memory SQLite shares one connection."""
    async_url = to_async_url(url)

    if async_url.startswith("sqlite"):
        if ":memory:" in async_url or async_url == "sqlite+aiosqlite://":
            return create_async_engine(
                async_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(async_url)

    return create_async_engine(
        async_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@asynccontextmanager
async def get_db_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a ledger session that is rolled back on error and always closed.

    Every SqlLedgerStore method runs inside one of these, usually combined
    with ``session.begin()`` for writes:

        async with get_db_session(factory) as session, session.begin():
            await session.execute(update(AccountRecord)...)
    """
    session = factory()
    try:
        yield session
    except Exception:
        if session.in_transaction():
            await session.rollback()
        raise
    finally:
        await session.close()
