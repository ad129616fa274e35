"""Store protocols consumed by the access resolver and forum services.

Uses Python's Protocol for structural subtyping, so the SQLAlchemy stores
and the in-memory stores need no common base class.

Implementations:
    - forumhub.modules.forum.repository: AsyncSession backed
    - forumhub.modules.forum.memory: dict backed, single process
"""

from typing import Protocol, runtime_checkable

from forumhub.models.forum import AccessLevel
from forumhub.models.user import Role
from forumhub.modules.forum.schemas import AccessGrantRead, ForumRead, UserRead


@runtime_checkable
class ForumStore(Protocol):
    """Forum records and parent/child traversal."""

    async def get(self, forum_id: int) -> ForumRead | None:
        ...

    async def get_parent_id(self, forum_id: int) -> int | None:
        """Parent of a forum, None for a root.

        Raises:
            NotFoundError: If the forum does not exist
        """
        ...

    async def has_subforums(self, forum_id: int) -> bool:
        ...

    async def list_roots(self) -> list[ForumRead]:
        ...

    async def list_children(self, parent_id: int) -> list[ForumRead]:
        ...

    async def find_root_by_name(self, name: str) -> ForumRead | None:
        """Case-insensitive lookup among root forums."""
        ...

    async def search(self, term: str) -> list[ForumRead]:
        """Case-insensitive substring match on forum names."""
        ...

    async def create(
        self,
        name: str,
        description: str | None = None,
        parent_id: int | None = None,
    ) -> ForumRead:
        ...

    async def update(
        self,
        forum_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> ForumRead:
        """None leaves a field unchanged; an empty description clears it."""
        ...

    async def set_parent(self, forum_id: int, parent_id: int | None) -> ForumRead:
        ...

    async def delete(self, forum_id: int) -> None:
        """Delete a forum together with its grants and posts."""
        ...


@runtime_checkable
class AccessGrantStore(Protocol):
    """Per-user, per-forum grant rows. At most one row per pair."""

    async def find_grant(self, user_id: int, forum_id: int) -> AccessLevel | None:
        ...

    async def upsert_grant(
        self, user_id: int, forum_id: int, level: AccessLevel
    ) -> AccessGrantRead:
        """Create the grant or overwrite its level; atomic per pair."""
        ...

    async def delete_grant(self, user_id: int, forum_id: int) -> bool:
        """Returns False when there was nothing to delete."""
        ...

    async def list_for_forum(self, forum_id: int) -> list[AccessGrantRead]:
        ...

    async def list_for_user(
        self, user_id: int, level: AccessLevel | None = None
    ) -> list[AccessGrantRead]:
        ...


@runtime_checkable
class UserStore(Protocol):
    """Read-only view of users and their global roles."""

    async def get(self, user_id: int) -> UserRead | None:
        ...

    async def get_role(self, user_id: int) -> Role | None:
        """Global role, None for an unknown user."""
        ...
