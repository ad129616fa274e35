"""
Forum Service - Forum tree and access grant management.
"""

from loguru import logger

from forumhub.core.config import settings
from forumhub.core.exceptions import (
    BadRequestError,
    DuplicateResourceError,
    InvalidStateError,
    NotFoundError,
)
from forumhub.models.forum import AccessLevel
from forumhub.modules.forum.access import AccessResolver
from forumhub.modules.forum.schemas import AccessFlags, AccessGrantRead, ForumRead
from forumhub.modules.forum.stores import AccessGrantStore, ForumStore, UserStore


class ForumService:
    """
    Service for managing nested forums and who may access them.

    Every mutation is authorized through the AccessResolver, so granting
    access itself requires resolving access.

    Usage:
        forum = ForumService(forums, grants, users)
        root = await forum.create_forum("General", None, creator_id=user_id)
    """

    def __init__(
        self,
        forums: ForumStore,
        grants: AccessGrantStore,
        users: UserStore,
        resolver: AccessResolver | None = None,
    ) -> None:
        """Initialize forum service with its stores."""
        self.forums = forums
        self.grants = grants
        self.users = users
        self.resolver = resolver or AccessResolver(forums, grants, users)

    # ==================== Forums ====================

    async def get_forum(self, forum_id: int) -> ForumRead:
        """Get forum by ID."""
        forum = await self.forums.get(forum_id)
        if forum is None:
            raise NotFoundError("Forum", "id", forum_id)
        return forum

    async def get_root_forums(self) -> list[ForumRead]:
        """Get all forums without a parent."""
        return await self.forums.list_roots()

    async def get_subforums(self, parent_id: int) -> list[ForumRead]:
        """Get direct children of a forum."""
        await self.get_forum(parent_id)
        return await self.forums.list_children(parent_id)

    async def create_forum(
        self,
        name: str,
        description: str | None,
        creator_id: int,
    ) -> ForumRead:
        """
        Create a root forum.

        The creator is granted ADMIN on the new forum.

        Raises:
            BadRequestError: Blank name
            NotFoundError: Unknown creator
            DuplicateResourceError: A root forum with that name exists
        """
        name = self._clean_name(name)
        await self._require_user(creator_id)

        if await self.forums.find_root_by_name(name) is not None:
            raise DuplicateResourceError("Forum", "name", name)

        forum = await self.forums.create(name, description, parent_id=None)
        await self.grants.upsert_grant(creator_id, forum.id, AccessLevel.ADMIN)

        logger.info(f"Forum {forum.id} '{forum.name}' created by user {creator_id}")
        return forum

    async def create_subforum(
        self,
        name: str,
        description: str | None,
        parent_id: int,
        creator_id: int,
    ) -> ForumRead:
        """
        Create a forum under an existing parent.

        Requires ADMIN on the parent. The creator is granted ADMIN on the
        new forum.

        Raises:
            BadRequestError: Blank name
            NotFoundError: Unknown parent or creator
            AccessDeniedError: Creator lacks ADMIN on the parent
            DuplicateResourceError: A sibling with that name exists
            InvalidStateError: The new forum would exceed the depth cap
        """
        name = self._clean_name(name)
        await self.get_forum(parent_id)
        await self.resolver.require_access(
            parent_id, creator_id, AccessLevel.ADMIN, action="create subforum in"
        )

        if await self._sibling_named(parent_id, name) is not None:
            raise DuplicateResourceError("Subforum", "name", name)

        self._check_depth(await self._depth(parent_id) + 1)

        forum = await self.forums.create(name, description, parent_id=parent_id)
        await self.grants.upsert_grant(creator_id, forum.id, AccessLevel.ADMIN)

        logger.info(
            f"Subforum {forum.id} '{forum.name}' created under {parent_id} by user {creator_id}"
        )
        return forum

    async def update_forum(
        self,
        forum_id: int,
        name: str | None,
        description: str | None,
        user_id: int,
    ) -> ForumRead:
        """
        Rename a forum and/or change its description.

        Blank names are ignored, a blank description clears it and None
        leaves either unchanged. Requires ADMIN on the forum.
        """
        forum = await self.get_forum(forum_id)
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.ADMIN, action="update"
        )

        new_name = None
        if name is not None and name.strip() and name.strip() != forum.name:
            new_name = name.strip()
            clash = (
                await self.forums.find_root_by_name(new_name)
                if forum.is_root
                else await self._sibling_named(forum.parent_id, new_name)
            )
            if clash is not None and clash.id != forum_id:
                raise DuplicateResourceError(
                    "Forum" if forum.is_root else "Subforum", "name", new_name
                )

        new_description = None
        if description is not None and (description.strip() or None) != forum.description:
            new_description = description.strip()

        if new_name is None and new_description is None:
            return forum

        return await self.forums.update(forum_id, new_name, new_description)

    async def delete_forum(self, forum_id: int, user_id: int) -> None:
        """
        Delete a forum and every grant on it.

        Requires ADMIN on the forum. A forum with subforums is rejected
        under the "reject" policy; under "cascade" the whole subtree goes,
        deepest forums first.

        Raises:
            InvalidStateError: Forum has subforums and policy is "reject"
        """
        await self.get_forum(forum_id)
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.ADMIN, action="delete"
        )

        if await self.forums.has_subforums(forum_id):
            if settings.forum_delete_policy != "cascade":
                raise InvalidStateError(
                    "Cannot delete forum with subforums. Delete subforums first or move them."
                )
            for descendant_id in reversed(await self._subtree_ids(forum_id)):
                await self.forums.delete(descendant_id)
            logger.info(f"Forum {forum_id} and its subforums deleted by user {user_id}")
            return

        await self.forums.delete(forum_id)
        logger.info(f"Forum {forum_id} deleted by user {user_id}")

    async def move_forum(
        self,
        forum_id: int,
        new_parent_id: int | None,
        user_id: int,
    ) -> ForumRead:
        """
        Re-parent a forum, or make it a root when new_parent_id is None.

        Requires ADMIN on the forum and on the new parent.

        Raises:
            InvalidStateError: New parent is the forum itself or a descendant,
                or the moved subtree would exceed the depth cap
            DuplicateResourceError: Name already taken at the destination
        """
        forum = await self.get_forum(forum_id)
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.ADMIN, action="move"
        )

        if new_parent_id is None:
            clash = await self.forums.find_root_by_name(forum.name)
            if clash is not None and clash.id != forum_id:
                raise DuplicateResourceError("Forum", "name", forum.name)
        else:
            await self.get_forum(new_parent_id)
            await self.resolver.require_access(
                new_parent_id,
                user_id,
                AccessLevel.ADMIN,
                resource="parent forum",
                action="move to",
            )

            clash = await self._sibling_named(new_parent_id, forum.name)
            if clash is not None and clash.id != forum_id:
                raise DuplicateResourceError("Subforum", "name", forum.name)

            # Walk up from the new parent; meeting the forum means a cycle
            current: int | None = new_parent_id
            while current is not None:
                if current == forum_id:
                    raise InvalidStateError(
                        "Cannot move a forum to be a subforum of itself or one of its descendants"
                    )
                current = await self.forums.get_parent_id(current)

            self._check_depth(
                await self._depth(new_parent_id) + 1 + await self._subtree_height(forum_id)
            )

        moved = await self.forums.set_parent(forum_id, new_parent_id)
        logger.info(f"Forum {forum_id} moved under {new_parent_id} by user {user_id}")
        return moved

    async def search_forums(self, term: str) -> list[ForumRead]:
        """Find forums whose name contains term (case-insensitive)."""
        if term is None or not term.strip():
            raise BadRequestError("Search term cannot be empty")
        return await self.forums.search(term.strip())

    # ==================== Access ====================

    async def has_forum_access(
        self,
        forum_id: int,
        user_id: int,
        level: AccessLevel,
    ) -> bool:
        """Resolve access including inherited grants."""
        return await self.resolver.has_access(forum_id, user_id, level)

    async def get_access_flags(self, forum_id: int, user_id: int) -> AccessFlags:
        """Read/write/admin flags for showing a forum to a user."""
        return await self.resolver.access_flags(forum_id, user_id)

    async def get_accessible_forums(self, user_id: int) -> list[ForumRead]:
        """Forums the user holds a direct grant on."""
        await self._require_user(user_id)
        grants = await self.grants.list_for_user(user_id)
        return await self._forums_for(grants)

    async def get_forums_by_access_level(
        self,
        user_id: int,
        level: AccessLevel,
    ) -> list[ForumRead]:
        """Forums the user holds a direct grant of exactly ``level`` on."""
        await self._require_user(user_id)
        grants = await self.grants.list_for_user(user_id, level)
        return await self._forums_for(grants)

    async def list_forum_grants(
        self,
        forum_id: int,
        user_id: int,
    ) -> list[AccessGrantRead]:
        """Direct grants on a forum. Requires ADMIN on it."""
        await self.get_forum(forum_id)
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.ADMIN, action="view access to"
        )
        return await self.grants.list_for_forum(forum_id)

    async def grant_forum_access(
        self,
        forum_id: int,
        user_id: int,
        level: AccessLevel,
        granter_id: int,
    ) -> AccessGrantRead:
        """
        Grant, or overwrite, a user's access level on a forum.

        Raises:
            NotFoundError: Unknown forum or target user
            AccessDeniedError: Granter lacks ADMIN on the forum
        """
        await self.get_forum(forum_id)
        await self._require_user(user_id)
        await self.resolver.require_access(
            forum_id, granter_id, AccessLevel.ADMIN, action="manage access to"
        )

        grant = await self.grants.upsert_grant(user_id, forum_id, level)
        logger.info(
            f"User {granter_id} granted {level.value} on forum {forum_id} to user {user_id}"
        )
        return grant

    async def update_forum_access(
        self,
        forum_id: int,
        user_id: int,
        level: AccessLevel,
        updater_id: int,
    ) -> AccessGrantRead:
        """
        Change the level of an existing grant.

        Raises:
            NotFoundError: Unknown forum or user, or no grant to update
            AccessDeniedError: Updater lacks ADMIN on the forum
            InvalidStateError: Would downgrade the forum's last ADMIN grant
        """
        await self.get_forum(forum_id)
        await self._require_user(user_id)
        await self.resolver.require_access(
            forum_id, updater_id, AccessLevel.ADMIN, action="manage access to"
        )

        current = await self.grants.find_grant(user_id, forum_id)
        if current is None:
            raise NotFoundError("Forum access for user", "id", user_id)

        if current is AccessLevel.ADMIN and level is not AccessLevel.ADMIN:
            if await self._admin_count(forum_id) <= 1:
                raise InvalidStateError("Cannot downgrade the last admin of a forum")

        grant = await self.grants.upsert_grant(user_id, forum_id, level)
        logger.info(
            f"User {updater_id} changed access of user {user_id} on forum {forum_id} "
            f"from {current.value} to {level.value}"
        )
        return grant

    async def revoke_forum_access(
        self,
        forum_id: int,
        user_id: int,
        revoker_id: int,
    ) -> bool:
        """
        Remove a user's direct grant on a forum.

        Returns:
            True if a grant was removed, False if there was none

        Raises:
            NotFoundError: Unknown forum or target user
            AccessDeniedError: Revoker lacks ADMIN on the forum
            InvalidStateError: Revoker would remove their own last ADMIN grant
        """
        await self.get_forum(forum_id)
        await self._require_user(user_id)
        await self.resolver.require_access(
            forum_id, revoker_id, AccessLevel.ADMIN, action="manage access to"
        )

        current = await self.grants.find_grant(user_id, forum_id)
        if current is None:
            return False

        if current is AccessLevel.ADMIN and user_id == revoker_id:
            if await self._admin_count(forum_id) <= 1:
                raise InvalidStateError(
                    "Cannot revoke your own admin access when you are the only admin"
                )

        removed = await self.grants.delete_grant(user_id, forum_id)
        logger.info(f"User {revoker_id} revoked access of user {user_id} on forum {forum_id}")
        return removed

    # ==================== Helpers ====================

    @staticmethod
    def _clean_name(name: str | None) -> str:
        if name is None or not name.strip():
            raise BadRequestError("Forum name cannot be empty")
        return name.strip()

    async def _require_user(self, user_id: int) -> None:
        if await self.users.get(user_id) is None:
            raise NotFoundError("User", "id", user_id)

    async def _sibling_named(self, parent_id: int, name: str) -> ForumRead | None:
        wanted = name.casefold()
        for sibling in await self.forums.list_children(parent_id):
            if sibling.name.casefold() == wanted:
                return sibling
        return None

    async def _admin_count(self, forum_id: int) -> int:
        grants = await self.grants.list_for_forum(forum_id)
        return sum(1 for g in grants if g.access_level is AccessLevel.ADMIN)

    async def _depth(self, forum_id: int) -> int:
        """Number of ancestors above forum_id; a root is at depth 0."""
        depth = 0
        current = await self.forums.get_parent_id(forum_id)
        while current is not None:
            depth += 1
            self._check_depth(depth)
            current = await self.forums.get_parent_id(current)
        return depth

    async def _subtree_height(self, forum_id: int) -> int:
        """Levels below forum_id; a leaf has height 0."""
        height = 0
        level = [forum_id]
        while True:
            below = []
            for parent_id in level:
                below.extend(child.id for child in await self.forums.list_children(parent_id))
            if not below:
                return height
            height += 1
            level = below

    def _check_depth(self, depth: int) -> None:
        # The resolver walks at most max_depth forums, the target included
        if depth >= self.resolver.max_depth:
            raise InvalidStateError(
                f"Forums cannot be nested more than {self.resolver.max_depth} levels deep"
            )

    async def _subtree_ids(self, forum_id: int) -> list[int]:
        """Forum ids in breadth-first order, starting with forum_id."""
        ids = [forum_id]
        index = 0
        while index < len(ids):
            for child in await self.forums.list_children(ids[index]):
                ids.append(child.id)
            index += 1
        return ids

    async def _forums_for(self, grants: list[AccessGrantRead]) -> list[ForumRead]:
        forums = []
        for grant in grants:
            forum = await self.forums.get(grant.forum_id)
            if forum is not None:
                forums.append(forum)
        return forums
