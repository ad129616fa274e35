"""
Forum models.

Includes:
- Forums (nested through parent_id)
- Access grants (one row per user and forum)
- Posts
- Comments (threaded through parent_id)
- Comment votes
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forumhub.core.database import Base

if TYPE_CHECKING:
    from forumhub.models.user import User


class AccessLevel(str, PyEnum):
    """
    Forum permission level, totally ordered READ < WRITE < ADMIN.

    Comparison operators follow that order instead of string order.
    """

    READ = "READ"
    WRITE = "WRITE"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def satisfies(self, required: "AccessLevel") -> bool:
        """True if this level is at least ``required``."""
        return self.rank >= required.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank >= other.rank


_LEVEL_RANK = {AccessLevel.READ: 0, AccessLevel.WRITE: 1, AccessLevel.ADMIN: 2}


class Forum(Base):
    """Forum, optionally nested under a parent forum."""

    __tablename__ = "forums"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("forums.id"), index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    parent: Mapped["Forum | None"] = relationship(
        "Forum", remote_side=[id], back_populates="children"
    )
    children: Mapped[list["Forum"]] = relationship(
        "Forum", back_populates="parent"
    )
    accesses: Mapped[list["ForumAccess"]] = relationship(back_populates="forum")
    posts: Mapped[list["Post"]] = relationship(back_populates="forum")

    def __repr__(self) -> str:
        return f"<Forum {self.name}>"


class ForumAccess(Base):
    """A user's explicit access level on one forum."""

    __tablename__ = "forum_access"
    __table_args__ = (
        UniqueConstraint("user_id", "forum_id", name="uq_forum_access_user_forum"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    forum_id: Mapped[int] = mapped_column(ForeignKey("forums.id"), index=True)
    access_level: Mapped[AccessLevel] = mapped_column(
        Enum(AccessLevel, name="access_level")
    )

    # Timestamps
    granted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="forum_accesses")
    forum: Mapped["Forum"] = relationship(back_populates="accesses")

    def __repr__(self) -> str:
        return f"<ForumAccess user={self.user_id} forum={self.forum_id} {self.access_level}>"


class Post(Base):
    """Post inside a forum."""

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    forum_id: Mapped[int] = mapped_column(ForeignKey("forums.id"), index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"))

    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text)

    # Status
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    forum: Mapped["Forum"] = relationship(back_populates="posts")
    author: Mapped["User"] = relationship(back_populates="posts")
    comments: Mapped[list["Comment"]] = relationship(back_populates="post")

    def __repr__(self) -> str:
        return f"<Post {self.title[:30]}>"


class Comment(Base):
    """Comment on a post, or a reply to another comment."""

    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("comments.id"))

    content: Mapped[str] = mapped_column(Text)

    # Status
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    post: Mapped["Post"] = relationship(back_populates="comments")
    author: Mapped["User"] = relationship(back_populates="comments")
    parent: Mapped["Comment | None"] = relationship(
        "Comment", remote_side=[id], back_populates="replies"
    )
    replies: Mapped[list["Comment"]] = relationship(
        "Comment", back_populates="parent"
    )
    votes: Mapped[list["CommentVote"]] = relationship(back_populates="comment")

    def __repr__(self) -> str:
        return f"<Comment {self.id} on post {self.post_id}>"


class CommentVote(Base):
    """A user's +1 or -1 on a comment. At most one row per user and comment."""

    __tablename__ = "comment_votes"
    __table_args__ = (
        UniqueConstraint("user_id", "comment_id", name="uq_comment_vote_user_comment"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    comment_id: Mapped[int] = mapped_column(ForeignKey("comments.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    value: Mapped[int] = mapped_column(SmallInteger)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    comment: Mapped["Comment"] = relationship(back_populates="votes")

    def __repr__(self) -> str:
        return f"<CommentVote user={self.user_id} comment={self.comment_id} {self.value:+d}>"
