"""Tests for the SQLAlchemy stores and the services wired over them,
against an in-memory SQLite database."""

import pytest
from sqlalchemy import func, select

from forumhub.core.exceptions import InvalidStateError, NotFoundError
from forumhub.models.forum import AccessLevel, ForumAccess
from forumhub.models.user import Role
from forumhub.modules.forum.repository import (
    SQLAccessGrantStore,
    SQLForumStore,
    SQLUserStore,
)
from forumhub.modules.forum.stores import AccessGrantStore, ForumStore, UserStore


async def _grant_rows(db_session, user_id: int, forum_id: int) -> int:
    result = await db_session.execute(
        select(func.count())
        .select_from(ForumAccess)
        .where(ForumAccess.user_id == user_id, ForumAccess.forum_id == forum_id)
    )
    return result.scalar_one()


class TestProtocols:
    @pytest.mark.asyncio
    async def test_sql_stores_satisfy_protocols(self, db_session):
        assert isinstance(SQLForumStore(db_session), ForumStore)
        assert isinstance(SQLAccessGrantStore(db_session), AccessGrantStore)
        assert isinstance(SQLUserStore(db_session), UserStore)

    def test_memory_stores_satisfy_protocols(self, memory):
        assert isinstance(memory.forums, ForumStore)
        assert isinstance(memory.grants, AccessGrantStore)
        assert isinstance(memory.users, UserStore)


class TestSQLForumStore:
    @pytest.mark.asyncio
    async def test_tree_navigation(self, db_session):
        forums = SQLForumStore(db_session)
        root = await forums.create("Root", "top")
        sub = await forums.create("Sub", None, root.id)

        assert await forums.get_parent_id(sub.id) == root.id
        assert await forums.get_parent_id(root.id) is None
        assert await forums.has_subforums(root.id) is True
        assert await forums.has_subforums(sub.id) is False
        assert [f.id for f in await forums.list_roots()] == [root.id]
        assert [f.id for f in await forums.list_children(root.id)] == [sub.id]

    @pytest.mark.asyncio
    async def test_update_clears_blank_description(self, db_session):
        forums = SQLForumStore(db_session)
        forum = await forums.create("General", "Talk")

        renamed = await forums.update(forum.id, "Lounge")
        cleared = await forums.update(forum.id, None, "")

        assert renamed.description == "Talk"
        assert (cleared.name, cleared.description) == ("Lounge", None)

    @pytest.mark.asyncio
    async def test_parent_of_missing_forum_is_not_found(self, db_session):
        forums = SQLForumStore(db_session)

        with pytest.raises(NotFoundError):
            await forums.get_parent_id(404)

    @pytest.mark.asyncio
    async def test_create_under_missing_parent(self, db_session):
        forums = SQLForumStore(db_session)

        with pytest.raises(NotFoundError):
            await forums.create("Orphan", None, 404)

    @pytest.mark.asyncio
    async def test_find_root_by_name_ignores_case_and_subforums(self, db_session):
        forums = SQLForumStore(db_session)
        root = await forums.create("General")
        await forums.create("Nested", None, root.id)

        assert (await forums.find_root_by_name("GENERAL")).id == root.id
        assert await forums.find_root_by_name("nested") is None

    @pytest.mark.asyncio
    async def test_delete_cascades_grants(self, db_session):
        forums = SQLForumStore(db_session)
        grants = SQLAccessGrantStore(db_session)
        users = SQLUserStore(db_session)
        user = await users.create("alice", "alice@example.com")
        forum = await forums.create("General")
        await grants.upsert_grant(user.id, forum.id, AccessLevel.WRITE)

        await forums.delete(forum.id)

        assert await forums.get(forum.id) is None
        assert await grants.list_for_forum(forum.id) == []


class TestSQLAccessGrantStore:
    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row(self, db_session):
        forums = SQLForumStore(db_session)
        grants = SQLAccessGrantStore(db_session)
        user = await SQLUserStore(db_session).create("alice", "alice@example.com")
        forum = await forums.create("General")

        await grants.upsert_grant(user.id, forum.id, AccessLevel.READ)
        updated = await grants.upsert_grant(user.id, forum.id, AccessLevel.ADMIN)

        assert updated.access_level is AccessLevel.ADMIN
        assert await grants.find_grant(user.id, forum.id) is AccessLevel.ADMIN
        assert await _grant_rows(db_session, user.id, forum.id) == 1

    @pytest.mark.asyncio
    async def test_delete_grant(self, db_session):
        forums = SQLForumStore(db_session)
        grants = SQLAccessGrantStore(db_session)
        user = await SQLUserStore(db_session).create("alice", "alice@example.com")
        forum = await forums.create("General")
        await grants.upsert_grant(user.id, forum.id, AccessLevel.READ)

        assert await grants.delete_grant(user.id, forum.id) is True
        assert await grants.delete_grant(user.id, forum.id) is False
        assert await grants.find_grant(user.id, forum.id) is None

    @pytest.mark.asyncio
    async def test_list_for_user_by_level(self, db_session):
        forums = SQLForumStore(db_session)
        grants = SQLAccessGrantStore(db_session)
        user = await SQLUserStore(db_session).create("alice", "alice@example.com")
        a = await forums.create("A")
        b = await forums.create("B")
        await grants.upsert_grant(user.id, a.id, AccessLevel.READ)
        await grants.upsert_grant(user.id, b.id, AccessLevel.ADMIN)

        assert len(await grants.list_for_user(user.id)) == 2
        admin_grants = await grants.list_for_user(user.id, AccessLevel.ADMIN)
        assert [g.forum_id for g in admin_grants] == [b.id]


class TestSQLUserStore:
    @pytest.mark.asyncio
    async def test_roles(self, db_session):
        users = SQLUserStore(db_session)
        admin = await users.create("root", "root@example.com", Role.ADMIN)

        assert await users.get_role(admin.id) is Role.ADMIN
        assert await users.get_role(404) is None
        assert (await users.get(admin.id)).username == "root"


class TestWiredServices:
    @pytest.mark.asyncio
    async def test_moderator_scenario(self, services):
        owner = await services.users.create("owner", "owner@example.com")
        moderator = await services.users.create("mod", "mod@example.com", Role.MODERATOR)
        root = await services.forums.create_forum("Root", None, owner.id)
        sub = await services.forums.create_subforum("Sub", None, root.id, owner.id)

        await services.forums.grant_forum_access(
            sub.id, moderator.id, AccessLevel.ADMIN, owner.id
        )

        resolver = services.resolver
        assert await resolver.has_access(sub.id, moderator.id, AccessLevel.ADMIN) is True
        assert await resolver.has_access(root.id, moderator.id, AccessLevel.ADMIN) is False

    @pytest.mark.asyncio
    async def test_nearest_wins_over_sql(self, services):
        owner = await services.users.create("owner", "owner@example.com")
        user = await services.users.create("user", "user@example.com")
        parent = await services.forums.create_forum("Parent", None, owner.id)
        child = await services.forums.create_subforum("Child", None, parent.id, owner.id)
        await services.forums.grant_forum_access(parent.id, user.id, AccessLevel.ADMIN, owner.id)
        await services.forums.grant_forum_access(child.id, user.id, AccessLevel.READ, owner.id)

        flags = await services.forums.get_access_flags(child.id, user.id)

        assert (flags.can_read, flags.can_write, flags.can_admin) == (True, False, False)

    @pytest.mark.asyncio
    async def test_global_admin_over_sql(self, services):
        owner = await services.users.create("owner", "owner@example.com")
        admin = await services.users.create("root", "root@example.com", Role.ADMIN)
        forum = await services.forums.create_forum("General", None, owner.id)

        await services.forums.delete_forum(forum.id, admin.id)

        with pytest.raises(NotFoundError):
            await services.forums.get_forum(forum.id)

    @pytest.mark.asyncio
    async def test_depth_cap_enforced_over_sql(self, services):
        services.resolver.max_depth = 2
        owner = await services.users.create("owner", "owner@example.com")
        root = await services.forums.create_forum("Root", None, owner.id)
        sub = await services.forums.create_subforum("Sub", None, root.id, owner.id)

        with pytest.raises(InvalidStateError):
            await services.forums.create_subforum("Leaf", None, sub.id, owner.id)
