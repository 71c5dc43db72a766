"""
Async SQLAlchemy engine, session factory and transaction helpers.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()

# PostgreSQL SQLSTATEs for a SERIALIZABLE transaction that lost a race
SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}


class Base(DeclarativeBase):
    pass


engine = create_async_engine(settings.database_url, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for services that manage their own transactions."""
    return AsyncSessionLocal


@asynccontextmanager
async def serializable_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Open a session whose transaction runs at SERIALIZABLE isolation.

    Commits when the block exits cleanly, rolls back on any exception
    (including cancellation from a timeout).
    """
    async with session_factory() as session:
        # Must be the first operation on the session: it begins the transaction.
        await session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


def is_serialization_failure(exc: BaseException) -> bool:
    """True when the store aborted a transaction for conflicting with a concurrent one."""
    if not isinstance(exc, DBAPIError):
        return False
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return code in SERIALIZATION_FAILURE_CODES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
