"""Async database engine, session factory and declarative base."""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def _engine_options() -> dict:
    if settings.database_url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


engine = create_async_engine(settings.database_url, echo=False, **_engine_options())

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


AFTER_COMMIT_KEY = "after_commit"


def after_commit(session: AsyncSession, callback: Callable[..., Awaitable[Any]], *args: Any) -> None:
    """Queue a coroutine function to run once the session has committed.

    Queued callbacks are dropped when the session rolls back.
    """
    session.info.setdefault(AFTER_COMMIT_KEY, []).append((callback, args))


async def commit(session: AsyncSession) -> None:
    """Commit the session, then run the callbacks queued with ``after_commit``."""
    await session.commit()
    for callback, args in session.info.pop(AFTER_COMMIT_KEY, []):
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"After-commit callback {callback.__name__} failed: {e}")


async def rollback(session: AsyncSession) -> None:
    session.info.pop(AFTER_COMMIT_KEY, None)
    await session.rollback()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session committed at the end of the request."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await commit(session)
        except Exception:
            await rollback(session)
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session context manager for code running outside a request (tasks, scripts)."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await commit(session)
        except Exception:
            await rollback(session)
            raise


async def init_db() -> None:
    """Create all tables. Used in development only."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()
