"""
Post store and like ledger, built directly on the SQL store.

Posts are scoped by author: every lookup takes (author_id, post_id) and a
post filed under a different author is treated as missing. Mutations commit
before the change is announced on the Redis channel, so a subscriber that
re-fetches on the notification always sees the new state.

like_count on a post is a redundant counter. It is overwritten by
update_like_count (last write wins) and never derived from the ledger on
read; the reconciler worker repairs drift between the two.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional

from opentelemetry import trace
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teefeed.clients.redis_client import publish_change
from teefeed.errors import (
    NotFound,
    PermissionDenied,
    RemoteUnavailable,
    Unauthenticated,
    ValidationFailed,
)
from teefeed.models import Like, Post, new_id, utcnow
from teefeed.schemas import PostCreate
from teefeed.telemetry import LIKE_MUTATIONS_TOTAL, POST_CREATED_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Notifier = Callable[[str, str, str], Awaitable[None]]


@contextmanager
def store_errors(operation: str):
    """Convert driver/connection failures into RemoteUnavailable."""
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        logger.error("Store operation %s failed: %s", operation, exc)
        raise RemoteUnavailable() from exc


class PostStore:
    def __init__(
        self,
        db: AsyncSession,
        notify: Optional[Notifier] = publish_change,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self._notify = notify
        self._clock = clock

    async def _announce(self, event: str, author_id: str, post_id: str) -> None:
        if self._notify is None:
            return
        try:
            await self._notify(event, author_id, post_id)
        except Exception as exc:
            logger.warning("Change notification %s for post %s failed: %s", event, post_id, exc)

    async def create_post(
        self,
        author_id: Optional[str],
        fields: PostCreate,
        display_name: str = "",
        username: str = "",
    ) -> str:
        """Persist a round under author_id, snapshotting the author's profile."""
        if not author_id:
            raise Unauthenticated()

        with tracer.start_as_current_span("create_post") as span, store_errors("create_post"):
            post = Post(
                post_id=new_id(),
                author_id=author_id,
                author_display_name=display_name,
                author_username=username,
                title=fields.title,
                score=fields.score,
                holes=fields.holes,
                greens_in_regulation=fields.greens_in_regulation,
                like_count=0,
                created_at=self._clock(),
            )
            self.db.add(post)
            await self.db.commit()
            span.set_attribute("post.id", post.post_id)

        POST_CREATED_TOTAL.inc()
        logger.info("Post created: %s by user %s", post.post_id, author_id)
        await self._announce("post_created", author_id, post.post_id)
        return post.post_id

    async def get_post(self, author_id: str, post_id: str) -> Post:
        with store_errors("get_post"):
            post = await self.db.get(Post, post_id)
        if post is None or post.author_id != author_id:
            raise NotFound("Post not found")
        return post

    async def list_posts_by_author(self, author_id: str) -> list[Post]:
        with store_errors("list_posts_by_author"):
            rows = await self.db.execute(
                select(Post)
                .where(Post.author_id == author_id)
                .order_by(Post.created_at.desc())
            )
            return list(rows.scalars().all())

    async def list_all_posts(self) -> list[Post]:
        """Every author's posts merged into one list, newest first."""
        with tracer.start_as_current_span("list_all_posts") as span, store_errors("list_all_posts"):
            rows = await self.db.execute(select(Post).order_by(Post.created_at.desc()))
            posts = list(rows.scalars().all())
            span.set_attribute("feed.post_count", len(posts))
            return posts

    async def delete_post(self, caller_id: Optional[str], author_id: str, post_id: str) -> None:
        if not caller_id:
            raise Unauthenticated()
        if caller_id != author_id:
            raise PermissionDenied("Only the author can delete this post")

        post = await self.get_post(author_id, post_id)
        with store_errors("delete_post"):
            await self.db.execute(delete(Like).where(Like.post_id == post.post_id))
            await self.db.delete(post)
            await self.db.commit()

        logger.info("Post deleted: %s by user %s", post_id, author_id)
        await self._announce("post_deleted", author_id, post_id)

    async def update_like_count(self, author_id: str, post_id: str, new_count: int) -> None:
        """Overwrite like_count. The caller computes new_count; no increment here."""
        if new_count < 0:
            raise ValidationFailed("Like count cannot be negative", field="like_count")

        post = await self.get_post(author_id, post_id)
        with store_errors("update_like_count"):
            post.like_count = new_count
            await self.db.commit()

        await self._announce("like_count_updated", author_id, post_id)

    async def refresh_author_snapshot(
        self,
        caller_id: Optional[str],
        author_id: str,
        display_name: str,
        username: str,
    ) -> int:
        """
        Rewrite the cached author fields on all of author_id's posts.

        Snapshots are never refreshed implicitly; the author asks for it
        after editing their profile. Returns the number of posts touched.
        """
        if not caller_id:
            raise Unauthenticated()
        if caller_id != author_id:
            raise PermissionDenied("Only the author can refresh their posts")

        with store_errors("refresh_author_snapshot"):
            result = await self.db.execute(
                update(Post)
                .where(Post.author_id == author_id)
                .values(author_display_name=display_name, author_username=username)
                .execution_options(synchronize_session="fetch")
            )
            await self.db.commit()
        logger.info("Refreshed author snapshot on %d posts for %s", result.rowcount, author_id)
        return result.rowcount


class LikeLedger:
    """Who currently likes which post. One row per (post, user)."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _require_post(self, post_owner_id: str, post_id: str) -> None:
        with store_errors("like_ledger_lookup"):
            post = await self.db.get(Post, post_id)
        if post is None or post.author_id != post_owner_id:
            raise NotFound("Post not found")

    async def set_liked(self, post_owner_id: str, post_id: str, user_id: str, liked: bool) -> None:
        """Idempotent: liking twice or unliking a post never liked is a no-op."""
        await self._require_post(post_owner_id, post_id)

        with tracer.start_as_current_span("set_liked"), store_errors("set_liked"):
            existing = await self.db.get(Like, (post_id, user_id))
            if liked and existing is None:
                self.db.add(Like(post_id=post_id, user_id=user_id, post_owner_id=post_owner_id))
                try:
                    await self.db.commit()
                except IntegrityError:
                    # Concurrent like for the same pair landed first
                    await self.db.rollback()
                    logger.debug("Like %s/%s already recorded", post_id, user_id)
                else:
                    LIKE_MUTATIONS_TOTAL.labels(action="like").inc()
            elif not liked and existing is not None:
                await self.db.delete(existing)
                await self.db.commit()
                LIKE_MUTATIONS_TOTAL.labels(action="unlike").inc()

    async def is_liked(self, post_owner_id: str, post_id: str, user_id: str) -> bool:
        await self._require_post(post_owner_id, post_id)
        with store_errors("is_liked"):
            return await self.db.get(Like, (post_id, user_id)) is not None

    async def liked_post_ids(self, user_id: str, post_ids: Iterable[str]) -> set[str]:
        """Which of post_ids has user_id liked — one query for a whole feed page."""
        ids = list(post_ids)
        if not ids:
            return set()
        with store_errors("liked_post_ids"):
            rows = await self.db.execute(
                select(Like.post_id).where(Like.user_id == user_id, Like.post_id.in_(ids))
            )
            return {r[0] for r in rows.all()}

    async def count_likes(self, post_id: str) -> int:
        with store_errors("count_likes"):
            result = await self.db.execute(
                select(func.count()).select_from(Like).where(Like.post_id == post_id)
            )
            return result.scalar_one()

    async def counts_by_post(self) -> dict[str, int]:
        with store_errors("counts_by_post"):
            rows = await self.db.execute(
                select(Like.post_id, func.count()).group_by(Like.post_id)
            )
            return {post_id: count for post_id, count in rows.all()}
