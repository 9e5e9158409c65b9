"""Async database engine and session management.

Provides the declarative base, the async engine/session factory and the
FastAPI dependency that yields a session per request.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from earntrack_media.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all media pipeline models."""


def _normalize_url(database_url: str) -> str:
    # Hosted Postgres hands out postgresql:// but the async engine needs asyncpg
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine_and_sessionmaker(
    database_url: str,
    null_pool: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine and its session factory.

    Args:
        database_url: SQLAlchemy database URL
        null_pool: Disable connection pooling. Worker processes run every task
            in a fresh event loop, so pooled connections must not be reused.

    Returns:
        Tuple of (engine, session factory)
    """
    url = _normalize_url(database_url)
    engine_kwargs: dict = {"echo": settings.DATABASE_ECHO}

    if null_pool:
        engine_kwargs["poolclass"] = NullPool
    elif not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)

    engine = create_async_engine(url, **engine_kwargs)
    session_maker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_maker


engine, async_session_maker = create_engine_and_sessionmaker(settings.DATABASE_URL)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database session injection.

    Commits on success and rolls back when the handler raises.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
