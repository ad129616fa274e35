"""
Post Service - Posts, comments and comment votes inside forums.

Reads need READ on the forum, writes need WRITE, and editing or deleting
someone else's post or comment needs ADMIN on the forum. Authors keep
their edit rights only while they can still read the forum.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from forumhub.core.config import settings
from forumhub.core.exceptions import AccessDeniedError, BadRequestError, NotFoundError
from forumhub.models.forum import AccessLevel, Comment, CommentVote, Post
from forumhub.models.user import User
from forumhub.modules.forum.access import AccessResolver
from forumhub.modules.forum.schemas import CommentRead, PostRead


class PostService:
    """
    Service for posts, threaded comments and comment votes.

    Cross-forum listings (by author, search) only return items from
    forums the caller can READ.

    Usage:
        posts = PostService(db_session, resolver)
        page = await posts.get_posts(forum_id, user_id, limit=20)
    """

    def __init__(self, db: AsyncSession, resolver: AccessResolver) -> None:
        """Initialize post service with database session and resolver."""
        self.db = db
        self.resolver = resolver

    # ==================== Posts ====================

    async def create_post(
        self,
        forum_id: int,
        author_id: int,
        title: str,
        content: str,
    ) -> PostRead:
        """
        Create new post in a forum.

        Args:
            forum_id: Forum ID
            author_id: Author user ID
            title: Post title
            content: Post body

        Returns:
            Created post
        """
        if not title or not title.strip():
            raise BadRequestError("Post title cannot be empty")
        if not content or not content.strip():
            raise BadRequestError("Post content cannot be empty")

        await self.resolver.require_access(
            forum_id, author_id, AccessLevel.WRITE, action="create posts in"
        )

        post = Post(
            forum_id=forum_id,
            author_id=author_id,
            title=title.strip(),
            content=content,
        )
        self.db.add(post)
        await self.db.flush()
        await self.db.refresh(post)

        logger.info(f"Post {post.id} created in forum {forum_id} by user {author_id}")
        return PostRead.model_validate(post)

    async def get_post(self, post_id: int, user_id: int) -> PostRead:
        """Get post by ID; requires READ on its forum."""
        post = await self._get_post(post_id)
        await self.resolver.require_access(
            post.forum_id, user_id, AccessLevel.READ, resource="post", action="view"
        )
        return PostRead.model_validate(post)

    async def get_posts(
        self,
        forum_id: int,
        user_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PostRead]:
        """
        Get posts in a forum, newest first.

        Args:
            forum_id: Forum ID
            user_id: Reader user ID
            limit: Max results (None for the configured page size)
            offset: Pagination offset

        Returns:
            List of posts
        """
        limit = self._page_size(limit, offset)
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.READ, action="view posts in"
        )

        query = (
            select(Post)
            .where(Post.forum_id == forum_id)
            .order_by(Post.created_at.desc(), Post.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        return [PostRead.model_validate(p) for p in result.scalars().all()]

    async def get_posts_by_user(
        self,
        author_id: int,
        user_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PostRead]:
        """
        Posts written by author_id, newest first.

        Only posts in forums that user_id can READ are returned; paging
        applies to that filtered list.
        """
        limit = self._page_size(limit, offset)
        await self._require_user(author_id)
        await self._require_user(user_id)

        query = (
            select(Post, Post.forum_id)
            .where(Post.author_id == author_id)
            .order_by(Post.created_at.desc(), Post.id.desc())
        )
        result = await self.db.execute(query)
        posts = await self._readable(result.all(), user_id)
        return [PostRead.model_validate(p) for p in posts[offset:offset + limit]]

    async def search_posts(
        self,
        term: str,
        user_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PostRead]:
        """Search titles and bodies of posts in every forum the user can READ."""
        pattern = self._pattern(term)
        limit = self._page_size(limit, offset)
        await self._require_user(user_id)

        query = (
            select(Post, Post.forum_id)
            .where(or_(Post.title.ilike(pattern), Post.content.ilike(pattern)))
            .order_by(Post.created_at.desc(), Post.id.desc())
        )
        result = await self.db.execute(query)
        posts = await self._readable(result.all(), user_id)
        return [PostRead.model_validate(p) for p in posts[offset:offset + limit]]

    async def search_posts_in_forum(
        self,
        forum_id: int,
        term: str,
        user_id: int,
    ) -> list[PostRead]:
        """Search titles and bodies of posts in one forum."""
        pattern = self._pattern(term)
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.READ, action="view posts in"
        )

        query = (
            select(Post)
            .where(
                Post.forum_id == forum_id,
                or_(Post.title.ilike(pattern), Post.content.ilike(pattern)),
            )
            .order_by(Post.created_at.desc(), Post.id.desc())
        )
        result = await self.db.execute(query)
        return [PostRead.model_validate(p) for p in result.scalars().all()]

    async def update_post(
        self,
        post_id: int,
        user_id: int,
        title: str | None = None,
        content: str | None = None,
    ) -> PostRead:
        """Update post title and/or content; author or forum ADMIN only."""
        post = await self._get_post(post_id)
        await self._require_author_or_admin(
            post.forum_id, (post.author_id,), user_id, "post", "update"
        )

        changed = False
        if title is not None and title.strip() and title.strip() != post.title:
            post.title = title.strip()
            changed = True
        if content is not None and content.strip() and content != post.content:
            post.content = content
            changed = True

        if changed:
            post.is_edited = True
            post.updated_at = datetime.utcnow()
            await self.db.flush()

        return PostRead.model_validate(post)

    async def delete_post(self, post_id: int, user_id: int) -> None:
        """Delete a post and its comments; author or forum ADMIN only."""
        post = await self._get_post(post_id)
        await self._require_author_or_admin(
            post.forum_id, (post.author_id,), user_id, "post", "delete"
        )

        comment_ids = select(Comment.id).where(Comment.post_id == post_id)
        await self.db.execute(
            delete(CommentVote).where(CommentVote.comment_id.in_(comment_ids))
        )
        await self.db.execute(delete(Comment).where(Comment.post_id == post_id))
        await self.db.execute(delete(Post).where(Post.id == post_id))
        await self.db.flush()

        logger.info(f"Post {post_id} deleted by user {user_id}")

    # ==================== Comments ====================

    async def create_comment(
        self,
        post_id: int,
        author_id: int,
        content: str,
        parent_id: int | None = None,
    ) -> CommentRead:
        """
        Comment on a post, or reply to a comment.

        Args:
            post_id: Post ID
            author_id: Author user ID
            content: Comment text
            parent_id: Comment being replied to, on the same post

        Returns:
            Created comment
        """
        if not content or not content.strip():
            raise BadRequestError("Comment content cannot be empty")

        post = await self._get_post(post_id)
        await self.resolver.require_access(
            post.forum_id, author_id, AccessLevel.WRITE, resource="post", action="comment on"
        )

        if parent_id is not None:
            parent = await self._get_comment(parent_id)
            if parent.post_id != post_id:
                raise BadRequestError("Parent comment belongs to a different post")

        comment = Comment(
            post_id=post_id,
            author_id=author_id,
            content=content,
            parent_id=parent_id,
        )
        self.db.add(comment)
        await self.db.flush()
        await self.db.refresh(comment)

        return CommentRead.model_validate(comment)

    async def get_comments(self, post_id: int, user_id: int) -> list[CommentRead]:
        """All comments on a post in creation order."""
        post = await self._get_post(post_id)
        await self.resolver.require_access(
            post.forum_id, user_id, AccessLevel.READ, resource="post", action="view"
        )

        query = (
            select(Comment)
            .where(Comment.post_id == post_id)
            .order_by(Comment.created_at, Comment.id)
        )
        result = await self.db.execute(query)
        return await self._comment_reads(list(result.scalars().all()))

    async def get_replies(self, comment_id: int, user_id: int) -> list[CommentRead]:
        """Direct replies to a comment in creation order."""
        comment = await self._get_comment(comment_id)
        post = await self._get_post(comment.post_id)
        await self.resolver.require_access(
            post.forum_id, user_id, AccessLevel.READ, resource="comment", action="view"
        )

        query = (
            select(Comment)
            .where(Comment.parent_id == comment_id)
            .order_by(Comment.created_at, Comment.id)
        )
        result = await self.db.execute(query)
        return await self._comment_reads(list(result.scalars().all()))

    async def get_comments_by_user(
        self,
        author_id: int,
        user_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CommentRead]:
        """Comments written by author_id in forums user_id can READ, newest first."""
        limit = self._page_size(limit, offset)
        await self._require_user(author_id)
        await self._require_user(user_id)

        query = (
            select(Comment, Post.forum_id)
            .join(Post, Comment.post_id == Post.id)
            .where(Comment.author_id == author_id)
            .order_by(Comment.created_at.desc(), Comment.id.desc())
        )
        result = await self.db.execute(query)
        comments = await self._readable(result.all(), user_id)
        return await self._comment_reads(comments[offset:offset + limit])

    async def search_comments(
        self,
        term: str,
        user_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CommentRead]:
        """Search comment text in every forum the user can READ."""
        pattern = self._pattern(term)
        limit = self._page_size(limit, offset)
        await self._require_user(user_id)

        query = (
            select(Comment, Post.forum_id)
            .join(Post, Comment.post_id == Post.id)
            .where(Comment.content.ilike(pattern))
            .order_by(Comment.created_at.desc(), Comment.id.desc())
        )
        result = await self.db.execute(query)
        comments = await self._readable(result.all(), user_id)
        return await self._comment_reads(comments[offset:offset + limit])

    async def update_comment(
        self,
        comment_id: int,
        content: str,
        user_id: int,
    ) -> CommentRead:
        """Update comment content; author or forum ADMIN only."""
        if not content or not content.strip():
            raise BadRequestError("Comment content cannot be empty")

        comment = await self._get_comment(comment_id)
        post = await self._get_post(comment.post_id)
        await self._require_author_or_admin(
            post.forum_id, (comment.author_id,), user_id, "comment", "update"
        )

        comment.content = content
        comment.is_edited = True
        comment.updated_at = datetime.utcnow()
        await self.db.flush()

        return (await self._comment_reads([comment]))[0]

    async def delete_comment(self, comment_id: int, user_id: int) -> None:
        """
        Delete a comment with all of its replies.

        Allowed for the comment's author, the post's author, or a forum ADMIN.
        """
        comment = await self._get_comment(comment_id)
        post = await self._get_post(comment.post_id)
        await self._require_author_or_admin(
            post.forum_id,
            (comment.author_id, post.author_id),
            user_id,
            "comment",
            "delete",
        )

        ids = [comment_id]
        frontier = [comment_id]
        while frontier:
            result = await self.db.execute(
                select(Comment.id).where(Comment.parent_id.in_(frontier))
            )
            frontier = list(result.scalars().all())
            ids.extend(frontier)

        await self.db.execute(delete(CommentVote).where(CommentVote.comment_id.in_(ids)))
        await self.db.execute(delete(Comment).where(Comment.id.in_(ids)))
        await self.db.flush()

        logger.info(f"Comment {comment_id} and {len(ids) - 1} replies deleted by user {user_id}")

    # ==================== Votes ====================

    async def upvote_comment(self, comment_id: int, user_id: int) -> CommentRead:
        """Record a +1 from user_id; replaces an earlier downvote."""
        return await self._vote(comment_id, user_id, 1)

    async def downvote_comment(self, comment_id: int, user_id: int) -> CommentRead:
        """Record a -1 from user_id; replaces an earlier upvote."""
        return await self._vote(comment_id, user_id, -1)

    async def _vote(self, comment_id: int, user_id: int, value: int) -> CommentRead:
        comment = await self._get_comment(comment_id)
        post = await self._get_post(comment.post_id)
        await self.resolver.require_access(
            post.forum_id, user_id, AccessLevel.READ, resource="comment", action="vote on"
        )

        result = await self.db.execute(
            select(CommentVote).where(
                CommentVote.comment_id == comment_id,
                CommentVote.user_id == user_id,
            )
        )
        vote = result.scalar_one_or_none()
        if vote is None:
            self.db.add(CommentVote(comment_id=comment_id, user_id=user_id, value=value))
        elif vote.value != value:
            vote.value = value
            vote.updated_at = datetime.utcnow()
        await self.db.flush()

        logger.debug(f"User {user_id} voted {value:+d} on comment {comment_id}")
        return (await self._comment_reads([comment]))[0]

    # ==================== Helpers ====================

    async def _get_post(self, post_id: int) -> Post:
        post = await self.db.get(Post, post_id)
        if post is None:
            raise NotFoundError("Post", "id", post_id)
        return post

    async def _get_comment(self, comment_id: int) -> Comment:
        comment = await self.db.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError("Comment", "id", comment_id)
        return comment

    async def _require_user(self, user_id: int) -> None:
        if await self.db.get(User, user_id) is None:
            raise NotFoundError("User", "id", user_id)

    async def _require_author_or_admin(
        self,
        forum_id: int,
        author_ids: tuple[int, ...],
        user_id: int,
        resource: str,
        action: str,
    ) -> None:
        await self.resolver.require_access(
            forum_id, user_id, AccessLevel.READ, resource=resource, action=action
        )
        if user_id in author_ids:
            return
        if not await self.resolver.has_access(forum_id, user_id, AccessLevel.ADMIN):
            raise AccessDeniedError(resource, action)

    async def _readable(self, rows, user_id: int) -> list:
        """Keep the items of (item, forum_id) rows whose forum user_id can READ."""
        allowed: dict[int, bool] = {}
        visible = []
        for item, forum_id in rows:
            if forum_id not in allowed:
                allowed[forum_id] = await self.resolver.has_access(
                    forum_id, user_id, AccessLevel.READ
                )
            if allowed[forum_id]:
                visible.append(item)
        return visible

    async def _comment_reads(self, comments: list[Comment]) -> list[CommentRead]:
        if not comments:
            return []
        result = await self.db.execute(
            select(CommentVote.comment_id, func.sum(CommentVote.value))
            .where(CommentVote.comment_id.in_([c.id for c in comments]))
            .group_by(CommentVote.comment_id)
        )
        scores = {comment_id: total for comment_id, total in result.all()}
        return [
            CommentRead.model_validate(c).model_copy(update={"score": scores.get(c.id) or 0})
            for c in comments
        ]

    @staticmethod
    def _pattern(term: str | None) -> str:
        if term is None or not term.strip():
            raise BadRequestError("Search term cannot be empty")
        return f"%{term.strip()}%"

    @staticmethod
    def _page_size(limit: int | None, offset: int) -> int:
        if limit is None:
            limit = settings.forum_posts_per_page
        if limit < 1:
            raise BadRequestError("Limit must be at least 1")
        if offset < 0:
            raise BadRequestError("Offset cannot be negative")
        return limit
