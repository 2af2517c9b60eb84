"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations
(aiosqlite for local runs and tests).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import settings


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


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
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
    """
    global _engine, _session_maker

    url = database_url or settings.database_url
    engine_kwargs = {"echo": settings.debug, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow
        # asyncpg expects ssl= rather than libpq's sslmode=
        url = url.replace("sslmode=", "ssl=")

    _engine = create_async_engine(url, **engine_kwargs)
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


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async generator for database sessions.

    For use with FastAPI's Depends() - FastAPI handles the lifecycle.
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    For use in background jobs such as the escalation sweep:

        async with get_session_context() as session:
            await service.run_sweep(now)
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """
    Create all database tables.

    This should only be used for development/testing.
    """
    # Importing the model modules registers their tables on Base.metadata
    import src.hierarchy.infrastructure.models  # noqa: F401
    import src.servicedesk.infrastructure.models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_database() -> bool:
    """Cheap connectivity check for the health endpoint."""
    if _engine is None:
        return False
    async with _engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True
