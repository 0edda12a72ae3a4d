"""Database operations for posts and comments."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .errors import InternalFailure, NotFound
from .models import Comment, Post, Reaction
from .reactions import ReactionCounts, ReactionEngine, Stance, TargetKind


@dataclass
class PostRecord:
    id: int
    title: str
    content: str
    categories: list[str]
    author_id: int
    author: str
    created: datetime
    likes: int = 0
    dislikes: int = 0


@dataclass
class CommentRecord:
    id: int
    post_id: int
    author_id: int
    author: str
    content: str
    created: datetime
    likes: int = 0
    dislikes: int = 0


def _split_categories(value: str) -> list[str]:
    return [c for c in value.split(",") if c]


def _post_record(post: Post, counts: ReactionCounts) -> PostRecord:
    return PostRecord(
        id=post.id,
        title=post.title,
        content=post.content,
        categories=_split_categories(post.categories),
        author_id=post.author_id,
        author=post.author,
        created=post.created,
        likes=counts.likes,
        dislikes=counts.dislikes,
    )


def _comment_record(comment: Comment, counts: ReactionCounts) -> CommentRecord:
    return CommentRecord(
        id=comment.id,
        post_id=comment.post_id,
        author_id=comment.author_id,
        author=comment.author,
        content=comment.content,
        created=comment.created,
        likes=counts.likes,
        dislikes=counts.dislikes,
    )


class PostStore:
    """Posts and comments. Reaction totals come from the reaction engine."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        reactions: ReactionEngine,
        logger: logging.Logger | None = None,
    ):
        self._session_factory = session_factory
        self._reactions = reactions
        self._log = logger or logging.getLogger(__name__)

    # ==================== Posts ====================

    async def create_post(
        self, author_id: int, author: str, title: str, content: str, categories: list[str]
    ) -> int:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    post = Post(
                        title=title,
                        content=content,
                        categories=",".join(categories),
                        author_id=author_id,
                        author=author,
                    )
                    session.add(post)
                    await session.flush()
                    post_id = post.id
            except SQLAlchemyError as e:
                self._log.error(f"Failed to create post for user id={author_id}", exc_info=True)
                raise InternalFailure("could not create post") from e

        self._log.info(f"Post created: id={post_id} author={author}")
        return post_id

    async def get_post(self, post_id: int) -> PostRecord:
        posts = await self._select_posts(select(Post).where(Post.id == post_id))
        if not posts:
            raise NotFound(f"post {post_id} does not exist")
        return posts[0]

    async def latest_posts(self) -> list[PostRecord]:
        return await self._select_posts(select(Post).order_by(Post.created.desc(), Post.id.desc()))

    async def posts_by_author(self, user_id: int) -> list[PostRecord]:
        return await self._select_posts(
            select(Post).where(Post.author_id == user_id).order_by(Post.created.desc(), Post.id.desc())
        )

    async def posts_liked_by(self, user_id: int) -> list[PostRecord]:
        liked = select(Reaction.target_id).where(
            Reaction.user_id == user_id,
            Reaction.target_kind == TargetKind.POST.value,
            Reaction.stance == Stance.LIKE.value,
        )
        return await self._select_posts(
            select(Post).where(Post.id.in_(liked)).order_by(Post.created.desc(), Post.id.desc())
        )

    async def posts_in_categories(self, categories: list[str]) -> list[PostRecord]:
        """Posts tagged with any of the given categories, newest first."""
        wanted = set(categories)
        posts = await self.latest_posts()
        return [p for p in posts if wanted.intersection(p.categories)]

    async def _select_posts(self, stmt) -> list[PostRecord]:
        async with self._session_factory() as session:
            try:
                posts = (await session.execute(stmt)).scalars().all()
            except SQLAlchemyError as e:
                self._log.error("Post query failed", exc_info=True)
                raise InternalFailure("could not load posts") from e

        counts = await self._reactions.counts_for(TargetKind.POST, [p.id for p in posts])
        return [_post_record(p, counts[p.id]) for p in posts]

    # ==================== Comments ====================

    async def add_comment(self, post_id: int, author_id: int, author: str, content: str) -> int:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if await session.scalar(select(Post.id).where(Post.id == post_id)) is None:
                        raise NotFound(f"post {post_id} does not exist")
                    comment = Comment(post_id=post_id, author_id=author_id, author=author, content=content)
                    session.add(comment)
                    await session.flush()
                    comment_id = comment.id
            except SQLAlchemyError as e:
                self._log.error(f"Failed to add comment to post id={post_id}", exc_info=True)
                raise InternalFailure("could not add comment") from e

        self._log.info(f"Comment created: id={comment_id} post_id={post_id} author={author}")
        return comment_id

    async def comments_for(self, post_id: int) -> list[CommentRecord]:
        """Comments on a post, oldest first."""
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(Comment).where(Comment.post_id == post_id).order_by(Comment.created, Comment.id)
                )
                comments = result.scalars().all()
            except SQLAlchemyError as e:
                self._log.error(f"Failed to load comments for post id={post_id}", exc_info=True)
                raise InternalFailure("could not load comments") from e

        counts = await self._reactions.counts_for(TargetKind.COMMENT, [c.id for c in comments])
        return [_comment_record(c, counts[c.id]) for c in comments]
