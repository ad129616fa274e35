"""
Database engine and session management.

Async SQLAlchemy engine built from settings. Schema migrations are handled
outside this package; ``init_db`` only creates tables for development and
tests.
"""

from typing import AsyncGenerator

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from forumhub.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine_from_settings(url: str | None = None) -> AsyncEngine:
    """Create async engine; pool options only apply to server databases."""
    url = url or settings.database_url
    kwargs: dict = {"echo": settings.database_echo}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


engine: AsyncEngine = create_engine_from_settings()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session for one unit of work.

    Commits when the caller finishes cleanly, rolls back otherwise.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables (development and tests only)."""
    # Register models on Base.metadata
    import forumhub.models  # noqa: F401

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Database tables created")


async def close_db(bind: AsyncEngine | None = None) -> None:
    """Dispose engine connections."""
    bind = bind or engine
    await bind.dispose()
