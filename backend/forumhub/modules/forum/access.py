"""
Forum Access Resolver - inherited access control over the forum tree.

Resolution order for (forum, user, required level):

1. A user with the global ADMIN role is allowed everywhere.
2. The nearest forum on the path from the target up to its root that
   carries a grant for the user decides: allowed iff that grant's level
   is at least the required level.
3. No grant anywhere on the path means denied.

Nearest-wins: a READ grant on a subforum shadows an ADMIN grant on its
parent. Levels are never combined across ancestors.
"""

from enum import Enum

from loguru import logger

from forumhub.core.config import settings
from forumhub.core.exceptions import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
)
from forumhub.models.forum import AccessLevel
from forumhub.models.user import Role
from forumhub.modules.forum.schemas import AccessFlags
from forumhub.modules.forum.stores import AccessGrantStore, ForumStore, UserStore


class AccessDecision(str, Enum):
    """Outcome of an access check."""

    ALLOW = "allow"
    DENY_NOT_FOUND = "deny_not_found"
    DENY_INSUFFICIENT = "deny_insufficient"

    @property
    def allowed(self) -> bool:
        return self is AccessDecision.ALLOW


class AccessResolver:
    """
    Resolves forum access for a user.

    Stateless apart from its store handles; every call performs one parent
    lookup and one grant lookup per level walked.

    Usage:
        resolver = AccessResolver(forums, grants, users)
        if await resolver.has_access(forum_id, user_id, AccessLevel.WRITE):
            ...
    """

    def __init__(
        self,
        forums: ForumStore,
        grants: AccessGrantStore,
        users: UserStore,
        max_depth: int | None = None,
    ) -> None:
        self.forums = forums
        self.grants = grants
        self.users = users
        self.max_depth = max_depth or settings.forum_max_depth

    async def decide(
        self,
        forum_id: int,
        user_id: int,
        required: AccessLevel,
    ) -> AccessDecision:
        """
        Resolve access without raising for missing records.

        Returns:
            DENY_NOT_FOUND if the user or forum does not exist,
            otherwise ALLOW or DENY_INSUFFICIENT

        Raises:
            InvalidStateError: If the parent chain is deeper than max_depth
        """
        role = await self.users.get_role(user_id)
        if role is None:
            return AccessDecision.DENY_NOT_FOUND

        if await self.forums.get(forum_id) is None:
            return AccessDecision.DENY_NOT_FOUND

        if role is Role.ADMIN:
            logger.debug(f"Access {required.value} on forum {forum_id} for user {user_id}: global admin")
            return AccessDecision.ALLOW

        current: int | None = forum_id
        depth = 0
        while current is not None:
            if depth >= self.max_depth:
                raise InvalidStateError(
                    f"Forum {forum_id} is nested deeper than {self.max_depth} levels"
                )

            level = await self.grants.find_grant(user_id, current)
            if level is not None:
                decision = (
                    AccessDecision.ALLOW
                    if level.satisfies(required)
                    else AccessDecision.DENY_INSUFFICIENT
                )
                logger.debug(
                    f"Access {required.value} on forum {forum_id} for user {user_id}: "
                    f"{decision.value} via {level.value} grant on forum {current}"
                )
                return decision

            current = await self.forums.get_parent_id(current)
            depth += 1

        logger.debug(f"Access {required.value} on forum {forum_id} for user {user_id}: no grant on path")
        return AccessDecision.DENY_INSUFFICIENT

    async def has_access(
        self,
        forum_id: int,
        user_id: int,
        required: AccessLevel,
    ) -> bool:
        """
        Check whether a user holds at least ``required`` on a forum.

        Raises:
            NotFoundError: If the user or forum does not exist
        """
        decision = await self.decide(forum_id, user_id, required)
        if decision is AccessDecision.DENY_NOT_FOUND:
            await self._raise_not_found(forum_id, user_id)
        return decision.allowed

    async def require_access(
        self,
        forum_id: int,
        user_id: int,
        required: AccessLevel,
        resource: str = "forum",
        action: str = "access",
    ) -> None:
        """
        Raise unless the user holds at least ``required`` on a forum.

        Raises:
            NotFoundError: If the user or forum does not exist
            AccessDeniedError: If the resolved level is insufficient
        """
        if not await self.has_access(forum_id, user_id, required):
            logger.warning(
                f"User {user_id} denied {required.value} on forum {forum_id} ({action})"
            )
            raise AccessDeniedError(resource, action)

    async def access_flags(self, forum_id: int, user_id: int) -> AccessFlags:
        """Read/write/admin summary for one user on one forum."""
        return AccessFlags(
            can_read=await self.has_access(forum_id, user_id, AccessLevel.READ),
            can_write=await self.has_access(forum_id, user_id, AccessLevel.WRITE),
            can_admin=await self.has_access(forum_id, user_id, AccessLevel.ADMIN),
        )

    async def _raise_not_found(self, forum_id: int, user_id: int) -> None:
        if await self.users.get_role(user_id) is None:
            raise NotFoundError("User", "id", user_id)
        raise NotFoundError("Forum", "id", forum_id)
