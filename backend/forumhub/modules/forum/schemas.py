"""
Forum record schemas.

Plain records passed across the store boundary, so callers never hold
live ORM objects.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from forumhub.models.forum import AccessLevel
from forumhub.models.user import Role


class ForumRead(BaseModel):
    """Forum as returned by a ForumStore."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    parent_id: int | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class AccessGrantRead(BaseModel):
    """Explicit (user, forum, level) grant."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    forum_id: int
    access_level: AccessLevel
    granted_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class UserRead(BaseModel):
    """User summary."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: Role = Role.USER
    is_active: bool = True


class AccessFlags(BaseModel):
    """Per-level access summary for one user on one forum."""

    can_read: bool = False
    can_write: bool = False
    can_admin: bool = False


class PostRead(BaseModel):
    """Post in a forum."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    forum_id: int
    author_id: int
    title: str
    content: str
    is_edited: bool = False
    created_at: datetime
    updated_at: datetime


class CommentRead(BaseModel):
    """Comment on a post."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    author_id: int
    parent_id: int | None = None
    content: str
    is_edited: bool = False
    score: int = 0
    created_at: datetime
    updated_at: datetime
