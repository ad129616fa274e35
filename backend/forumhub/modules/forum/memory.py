"""In-memory forum stores.

Forums, grants and users live in dicts keyed by id (grants by the
(user_id, forum_id) pair). Suitable for tests and single-process tools;
use the SQLAlchemy stores for anything shared between processes.

Writes are serialized with one asyncio.Lock shared by all three stores,
so an upsert is atomic per pair within one event loop.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime

from forumhub.core.exceptions import NotFoundError
from forumhub.models.forum import AccessLevel
from forumhub.models.user import Role
from forumhub.modules.forum.schemas import AccessGrantRead, ForumRead, UserRead


class InMemoryForumData:
    """Shared tables behind the in-memory stores."""

    def __init__(self) -> None:
        self.forums: dict[int, ForumRead] = {}
        self.grants: dict[tuple[int, int], AccessGrantRead] = {}
        self.users: dict[int, UserRead] = {}
        self.lock = asyncio.Lock()
        self._forum_ids = itertools.count(1)
        self._user_ids = itertools.count(1)

    def next_forum_id(self) -> int:
        return next(self._forum_ids)

    def next_user_id(self) -> int:
        return next(self._user_ids)


class InMemoryForumStore:
    """In-memory implementation of the ForumStore protocol."""

    def __init__(self, data: InMemoryForumData) -> None:
        self._data = data

    async def get(self, forum_id: int) -> ForumRead | None:
        return self._data.forums.get(forum_id)

    async def get_parent_id(self, forum_id: int) -> int | None:
        forum = self._data.forums.get(forum_id)
        if forum is None:
            raise NotFoundError("Forum", "id", forum_id)
        return forum.parent_id

    async def has_subforums(self, forum_id: int) -> bool:
        return any(f.parent_id == forum_id for f in self._data.forums.values())

    async def list_roots(self) -> list[ForumRead]:
        return [f for f in self._data.forums.values() if f.parent_id is None]

    async def list_children(self, parent_id: int) -> list[ForumRead]:
        return [f for f in self._data.forums.values() if f.parent_id == parent_id]

    async def find_root_by_name(self, name: str) -> ForumRead | None:
        wanted = name.casefold()
        for forum in self._data.forums.values():
            if forum.parent_id is None and forum.name.casefold() == wanted:
                return forum
        return None

    async def search(self, term: str) -> list[ForumRead]:
        needle = term.casefold()
        return [f for f in self._data.forums.values() if needle in f.name.casefold()]

    async def create(
        self,
        name: str,
        description: str | None = None,
        parent_id: int | None = None,
    ) -> ForumRead:
        async with self._data.lock:
            if parent_id is not None and parent_id not in self._data.forums:
                raise NotFoundError("Forum", "id", parent_id)
            forum = ForumRead(
                id=self._data.next_forum_id(),
                name=name,
                description=description,
                parent_id=parent_id,
            )
            self._data.forums[forum.id] = forum
            return forum

    async def update(
        self,
        forum_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> ForumRead:
        async with self._data.lock:
            forum = self._require(forum_id)
            changes: dict = {"updated_at": datetime.utcnow()}
            if name is not None:
                changes["name"] = name
            if description is not None:
                changes["description"] = description or None
            updated = forum.model_copy(update=changes)
            self._data.forums[forum_id] = updated
            return updated

    async def set_parent(self, forum_id: int, parent_id: int | None) -> ForumRead:
        async with self._data.lock:
            forum = self._require(forum_id)
            if parent_id is not None:
                self._require(parent_id)
            updated = forum.model_copy(
                update={"parent_id": parent_id, "updated_at": datetime.utcnow()}
            )
            self._data.forums[forum_id] = updated
            return updated

    async def delete(self, forum_id: int) -> None:
        async with self._data.lock:
            self._require(forum_id)
            for key in [k for k in self._data.grants if k[1] == forum_id]:
                del self._data.grants[key]
            del self._data.forums[forum_id]

    def _require(self, forum_id: int) -> ForumRead:
        forum = self._data.forums.get(forum_id)
        if forum is None:
            raise NotFoundError("Forum", "id", forum_id)
        return forum


class InMemoryAccessGrantStore:
    """In-memory implementation of the AccessGrantStore protocol."""

    def __init__(self, data: InMemoryForumData) -> None:
        self._data = data

    async def find_grant(self, user_id: int, forum_id: int) -> AccessLevel | None:
        grant = self._data.grants.get((user_id, forum_id))
        return grant.access_level if grant else None

    async def upsert_grant(
        self, user_id: int, forum_id: int, level: AccessLevel
    ) -> AccessGrantRead:
        async with self._data.lock:
            key = (user_id, forum_id)
            existing = self._data.grants.get(key)
            if existing is None:
                grant = AccessGrantRead(
                    user_id=user_id, forum_id=forum_id, access_level=level
                )
            else:
                grant = existing.model_copy(
                    update={"access_level": level, "updated_at": datetime.utcnow()}
                )
            self._data.grants[key] = grant
            return grant

    async def delete_grant(self, user_id: int, forum_id: int) -> bool:
        async with self._data.lock:
            return self._data.grants.pop((user_id, forum_id), None) is not None

    async def list_for_forum(self, forum_id: int) -> list[AccessGrantRead]:
        return [g for g in self._data.grants.values() if g.forum_id == forum_id]

    async def list_for_user(
        self, user_id: int, level: AccessLevel | None = None
    ) -> list[AccessGrantRead]:
        return [
            g
            for g in self._data.grants.values()
            if g.user_id == user_id and (level is None or g.access_level == level)
        ]


class InMemoryUserStore:
    """In-memory implementation of the UserStore protocol."""

    def __init__(self, data: InMemoryForumData) -> None:
        self._data = data

    async def get(self, user_id: int) -> UserRead | None:
        return self._data.users.get(user_id)

    async def get_role(self, user_id: int) -> Role | None:
        user = self._data.users.get(user_id)
        return user.role if user else None

    async def add(self, username: str, role: Role = Role.USER) -> UserRead:
        """Register a user; in-memory only, the SQL side owns user creation."""
        async with self._data.lock:
            user = UserRead(
                id=self._data.next_user_id(),
                username=username,
                email=f"{username}@example.com",
                role=role,
            )
            self._data.users[user.id] = user
            return user
