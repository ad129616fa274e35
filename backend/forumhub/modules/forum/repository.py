"""
SQLAlchemy-backed forum stores.

All three stores share one AsyncSession; they flush but never commit, so
the caller owns the transaction (see ``forumhub.core.database.get_db``).
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import delete, exists, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from forumhub.core.exceptions import NotFoundError
from forumhub.models.forum import (
    AccessLevel,
    Comment,
    CommentVote,
    Forum,
    ForumAccess,
    Post,
)
from forumhub.models.user import Role, User
from forumhub.modules.forum.schemas import AccessGrantRead, ForumRead, UserRead

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SQLForumStore:
    """ForumStore over the ``forums`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, forum_id: int) -> ForumRead | None:
        forum = await self.db.get(Forum, forum_id)
        return ForumRead.model_validate(forum) if forum else None

    async def get_parent_id(self, forum_id: int) -> int | None:
        result = await self.db.execute(
            select(Forum.id, Forum.parent_id).where(Forum.id == forum_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("Forum", "id", forum_id)
        return row.parent_id

    async def has_subforums(self, forum_id: int) -> bool:
        result = await self.db.execute(
            select(exists().where(Forum.parent_id == forum_id))
        )
        return bool(result.scalar())

    async def list_roots(self) -> list[ForumRead]:
        query = select(Forum).where(Forum.parent_id.is_(None)).order_by(Forum.name)
        return await self._list(query)

    async def list_children(self, parent_id: int) -> list[ForumRead]:
        query = select(Forum).where(Forum.parent_id == parent_id).order_by(Forum.name)
        return await self._list(query)

    async def find_root_by_name(self, name: str) -> ForumRead | None:
        query = select(Forum).where(
            Forum.parent_id.is_(None),
            func.lower(Forum.name) == name.lower(),
        )
        result = await self.db.execute(query)
        forum = result.scalars().first()
        return ForumRead.model_validate(forum) if forum else None

    async def search(self, term: str) -> list[ForumRead]:
        query = (
            select(Forum)
            .where(Forum.name.ilike(f"%{term}%"))
            .order_by(Forum.name)
        )
        return await self._list(query)

    async def create(
        self,
        name: str,
        description: str | None = None,
        parent_id: int | None = None,
    ) -> ForumRead:
        if parent_id is not None and await self.db.get(Forum, parent_id) is None:
            raise NotFoundError("Forum", "id", parent_id)

        forum = Forum(name=name, description=description, parent_id=parent_id)
        self.db.add(forum)
        await self.db.flush()
        await self.db.refresh(forum)
        return ForumRead.model_validate(forum)

    async def update(
        self,
        forum_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> ForumRead:
        forum = await self._require(forum_id)
        if name is not None:
            forum.name = name
        if description is not None:
            forum.description = description or None
        forum.updated_at = datetime.utcnow()

        await self.db.flush()
        return ForumRead.model_validate(forum)

    async def set_parent(self, forum_id: int, parent_id: int | None) -> ForumRead:
        forum = await self._require(forum_id)
        if parent_id is not None:
            await self._require(parent_id)
        forum.parent_id = parent_id
        forum.updated_at = datetime.utcnow()

        await self.db.flush()
        return ForumRead.model_validate(forum)

    async def delete(self, forum_id: int) -> None:
        """Delete a forum with its grants, posts, comments and votes."""
        await self._require(forum_id)

        post_ids = select(Post.id).where(Post.forum_id == forum_id)
        comment_ids = select(Comment.id).where(Comment.post_id.in_(post_ids))
        await self.db.execute(
            delete(CommentVote).where(CommentVote.comment_id.in_(comment_ids))
        )
        await self.db.execute(delete(Comment).where(Comment.post_id.in_(post_ids)))
        await self.db.execute(delete(Post).where(Post.forum_id == forum_id))
        await self.db.execute(delete(ForumAccess).where(ForumAccess.forum_id == forum_id))
        await self.db.execute(delete(Forum).where(Forum.id == forum_id))
        await self.db.flush()

    async def _require(self, forum_id: int) -> Forum:
        forum = await self.db.get(Forum, forum_id)
        if forum is None:
            raise NotFoundError("Forum", "id", forum_id)
        return forum

    async def _list(self, query) -> list[ForumRead]:
        result = await self.db.execute(query)
        return [ForumRead.model_validate(f) for f in result.scalars().all()]


class SQLAccessGrantStore:
    """AccessGrantStore over the ``forum_access`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_grant(self, user_id: int, forum_id: int) -> AccessLevel | None:
        result = await self.db.execute(
            select(ForumAccess.access_level).where(
                ForumAccess.user_id == user_id,
                ForumAccess.forum_id == forum_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_grant(
        self, user_id: int, forum_id: int, level: AccessLevel
    ) -> AccessGrantRead:
        """
        Create or overwrite the grant for (user, forum).

        PostgreSQL and SQLite get a single INSERT ... ON CONFLICT DO UPDATE
        against the (user_id, forum_id) unique constraint. Other dialects
        fall back to select-then-write inside the caller's transaction.
        """
        dialect = self.db.get_bind().dialect.name
        upsert = _UPSERT_INSERTS.get(dialect)
        if upsert is None:
            return await self._select_then_write(user_id, forum_id, level)

        now = datetime.utcnow()
        stmt = upsert(ForumAccess).values(
            user_id=user_id,
            forum_id=forum_id,
            access_level=level,
            granted_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "forum_id"],
            set_={"access_level": level, "updated_at": now},
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(ForumAccess)
            .where(
                ForumAccess.user_id == user_id,
                ForumAccess.forum_id == forum_id,
            )
            .execution_options(populate_existing=True)
        )
        return AccessGrantRead.model_validate(result.scalar_one())

    async def delete_grant(self, user_id: int, forum_id: int) -> bool:
        result = await self.db.execute(
            delete(ForumAccess).where(
                ForumAccess.user_id == user_id,
                ForumAccess.forum_id == forum_id,
            )
        )
        await self.db.flush()
        return result.rowcount > 0

    async def list_for_forum(self, forum_id: int) -> list[AccessGrantRead]:
        query = (
            select(ForumAccess)
            .where(ForumAccess.forum_id == forum_id)
            .order_by(ForumAccess.user_id)
        )
        result = await self.db.execute(query)
        return [AccessGrantRead.model_validate(a) for a in result.scalars().all()]

    async def list_for_user(
        self, user_id: int, level: AccessLevel | None = None
    ) -> list[AccessGrantRead]:
        query = select(ForumAccess).where(ForumAccess.user_id == user_id)
        if level is not None:
            query = query.where(ForumAccess.access_level == level)
        query = query.order_by(ForumAccess.forum_id)

        result = await self.db.execute(query)
        return [AccessGrantRead.model_validate(a) for a in result.scalars().all()]

    async def _get(self, user_id: int, forum_id: int) -> ForumAccess | None:
        result = await self.db.execute(
            select(ForumAccess).where(
                ForumAccess.user_id == user_id,
                ForumAccess.forum_id == forum_id,
            )
        )
        return result.scalar_one_or_none()

    async def _select_then_write(
        self, user_id: int, forum_id: int, level: AccessLevel
    ) -> AccessGrantRead:
        access = await self._get(user_id, forum_id)
        if access is None:
            access = ForumAccess(user_id=user_id, forum_id=forum_id, access_level=level)
            self.db.add(access)
            try:
                await self.db.flush()
            except IntegrityError:
                logger.warning(
                    f"Duplicate grant insert for user {user_id} on forum {forum_id}"
                )
                raise
            await self.db.refresh(access)
        else:
            access.access_level = level
            access.updated_at = datetime.utcnow()
            await self.db.flush()
        return AccessGrantRead.model_validate(access)


class SQLUserStore:
    """UserStore over the ``users`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, user_id: int) -> UserRead | None:
        user = await self.db.get(User, user_id)
        return UserRead.model_validate(user) if user else None

    async def get_role(self, user_id: int) -> Role | None:
        result = await self.db.execute(select(User.role).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create(
        self,
        username: str,
        email: str,
        role: Role = Role.USER,
    ) -> UserRead:
        """Insert a user row; registration itself lives outside this package."""
        user = User(username=username, email=email, role=role)
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return UserRead.model_validate(user)
