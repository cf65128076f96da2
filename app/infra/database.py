"""
Database Connection and Session Management

Async SQLAlchemy 2.0 engine, session factory and dependencies. Every
request gets its own session; the booking engine is bound to it.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Build an async engine for ``url``.

    NullPool keeps connections request-scoped, which also suits SQLite
    files used in tests.
    """
    return create_async_engine(url, echo=echo, poolclass=NullPool)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the app and by tests."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for(settings.database_url, echo=settings.debug)
async_session_factory = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session.

    Commits on success, rolls back on exception, always closes.

    Usage:
        @router.get("/example")
        async def example(db: AsyncSession = Depends(get_db)):
            engine = BookingEngine(db)
    """
    session = async_session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside FastAPI
    (scripts, background jobs).

    Usage:
        async with get_db_context() as db:
            await BookingEngine(db).register_provider("Dr. Rao")
    """
    session = async_session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create all tables and indexes.

    Development and tests only; production schemas are migrated.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine on shutdown."""
    await engine.dispose()


async def check_db_health() -> bool:
    """True if the database answers ``SELECT 1``."""
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
