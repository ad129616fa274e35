"""Tests for Settings, logging setup and the application lifespan."""

import sys

import pytest
from loguru import logger
from pydantic import ValidationError
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from forumhub.core.config import Settings
from forumhub.core.logging import setup_logging
from forumhub.main import lifespan


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FORUM_DELETE_POLICY", raising=False)
        monkeypatch.delenv("FORUM_MAX_DEPTH", raising=False)

        s = Settings(_env_file=None)

        assert s.forum_delete_policy == "reject"
        assert s.forum_max_depth == 64
        assert s.forum_posts_per_page == 20

    def test_postgres_url_gets_asyncpg_driver(self):
        s = Settings(_env_file=None, database_url="postgresql://u:p@db:5432/forum")

        assert s.database_url == "postgresql+asyncpg://u:p@db:5432/forum"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FORUM_DELETE_POLICY", "cascade")
        monkeypatch.setenv("FORUM_MAX_DEPTH", "8")

        s = Settings(_env_file=None)

        assert s.forum_delete_policy == "cascade"
        assert s.forum_max_depth == 8

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, forum_delete_policy="orphan")

    def test_zero_depth_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, forum_max_depth=0)


class TestLogging:
    def test_setup_logging_respects_level(self, capsys):
        setup_logging("WARNING")
        try:
            logger.info("quiet message")
            logger.warning("loud message")
            err = capsys.readouterr().err
        finally:
            logger.remove()
            logger.add(sys.__stderr__)

        assert "loud message" in err
        assert "quiet message" not in err


class TestLifespan:
    @pytest.mark.asyncio
    async def test_lifespan_creates_tables(self):
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        async with lifespan(engine):
            async with engine.connect() as conn:
                tables = await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).get_table_names()
                )

        assert {"users", "forums", "forum_access", "posts", "comments"} <= set(tables)
