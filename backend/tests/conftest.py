"""Shared fixtures.

Two worlds:
- ``memory``: dict-backed stores, for resolver and forum rules
- ``db_session``: an in-memory SQLite database via aiosqlite, for the
  SQLAlchemy stores and the post service
"""

import os

import pytest
import pytest_asyncio

# Must be set before any forumhub module import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("FORUM_DELETE_POLICY", "reject")
os.environ.setdefault("FORUM_MAX_DEPTH", "64")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from forumhub.core.database import init_db  # noqa: E402
from forumhub.main import build_services  # noqa: E402
from forumhub.models.user import Role  # noqa: E402
from forumhub.modules.forum.access import AccessResolver  # noqa: E402
from forumhub.modules.forum.memory import (  # noqa: E402
    InMemoryAccessGrantStore,
    InMemoryForumData,
    InMemoryForumStore,
    InMemoryUserStore,
)
from forumhub.modules.forum.service import ForumService  # noqa: E402


class MemoryWorld:
    """In-memory stores plus the resolver and forum service over them."""

    def __init__(self) -> None:
        self.data = InMemoryForumData()
        self.forums = InMemoryForumStore(self.data)
        self.grants = InMemoryAccessGrantStore(self.data)
        self.users = InMemoryUserStore(self.data)
        self.resolver = AccessResolver(self.forums, self.grants, self.users)
        self.service = ForumService(self.forums, self.grants, self.users, self.resolver)

    async def user(self, name: str, role: Role = Role.USER) -> int:
        return (await self.users.add(name, role)).id

    async def forum(self, name: str, parent_id: int | None = None) -> int:
        """Create a forum directly in the store, without any grant."""
        return (await self.forums.create(name, None, parent_id)).id


@pytest.fixture
def memory() -> MemoryWorld:
    return MemoryWorld()


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def services(db_session):
    return build_services(db_session)
