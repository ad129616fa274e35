"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from forumhub.models.forum import (
    AccessLevel,
    Comment,
    CommentVote,
    Forum,
    ForumAccess,
    Post,
)
from forumhub.models.user import Role, User

__all__ = [
    "AccessLevel",
    "Comment",
    "CommentVote",
    "Forum",
    "ForumAccess",
    "Post",
    "Role",
    "User",
]
