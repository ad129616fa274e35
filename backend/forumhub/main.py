"""
ForumHub application wiring.

Startup/shutdown of the database plus per-session construction of the
forum services. Whatever transport sits in front of ForumHub enters
``lifespan`` once and calls ``build_services`` per unit of work.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from forumhub.core.config import settings
from forumhub.core.database import close_db, init_db
from forumhub.core.logging import setup_logging
from forumhub.modules.forum import AccessResolver, ForumService, PostService
from forumhub.modules.forum.repository import (
    SQLAccessGrantStore,
    SQLForumStore,
    SQLUserStore,
)


@dataclass
class Services:
    """Services bound to one database session."""

    users: SQLUserStore
    resolver: AccessResolver
    forums: ForumService
    posts: PostService


def build_services(db: AsyncSession) -> Services:
    """Wire SQL stores, resolver and services for one session."""
    forum_store = SQLForumStore(db)
    grant_store = SQLAccessGrantStore(db)
    user_store = SQLUserStore(db)

    resolver = AccessResolver(forum_store, grant_store, user_store)
    return Services(
        users=user_store,
        resolver=resolver,
        forums=ForumService(forum_store, grant_store, user_store, resolver),
        posts=PostService(db, resolver),
    )


@asynccontextmanager
async def lifespan(
    bind: AsyncEngine | None = None,
    create_tables: bool = True,
) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    logger.info(f"Starting {settings.app_name} {settings.app_version}...")

    if create_tables:
        await init_db(bind)
        logger.info("Database initialized")

    try:
        yield
    finally:
        logger.info(f"Shutting down {settings.app_name}...")
        await close_db(bind)
        logger.info("Shutdown complete")
