"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations
(aiosqlite for local runs and tests).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from finops_sla.config import settings
from finops_sla.core import StoreUnavailableException


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    All models inherit from this class.
    """
    pass


# Global engine and session maker
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If engine has not been initialized
    """
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the session factory bound to the initialized engine."""
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_maker


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite files get a NullPool so every session opens its own
    connection; the pool options only apply to server databases.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )

    # Fix asyncpg SSL: replace sslmode with ssl for asyncpg compatibility
    database_url = database_url.replace("sslmode=", "ssl=")

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,  # Verify connections before using
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading after commit
        autoflush=False,
    )


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine and session maker.

    Should be called during application startup.

    Returns:
        AsyncEngine: The initialized engine
    """
    global _engine, _session_maker

    _engine = build_engine(database_url or settings.database_url, echo=settings.debug)
    _session_maker = build_session_maker(_engine)

    return _engine


async def close_database() -> None:
    """
    Close the database engine and dispose of connections.

    Should be called during application shutdown.
    """
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


STORE_ERROR_TYPES = (OperationalError, InterfaceError, DisconnectionError, OSError, ConnectionError)


def as_store_error(error: BaseException) -> Optional[StoreUnavailableException]:
    """
    Translate a connectivity failure into StoreUnavailableException.

    Integrity and programming errors return None; only the transient
    "cannot talk to the database" family is translated.
    """
    if not isinstance(error, STORE_ERROR_TYPES):
        return None
    orig = getattr(error, "orig", None)
    return StoreUnavailableException("Database unavailable", {"error": str(orig or error)})


@asynccontextmanager
async def translate_store_errors() -> AsyncGenerator[None, None]:
    """Re-raise connectivity failures as StoreUnavailableException."""
    try:
        yield
    except STORE_ERROR_TYPES as e:
        raise as_store_error(e) from e


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all database tables.

    This should only be used for development/testing.
    Production should use migrations (Alembic).
    """
    # Register models on Base.metadata
    import finops_sla.sla.infrastructure.models  # noqa: F401

    engine = engine or get_engine()
    async with translate_store_errors():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
