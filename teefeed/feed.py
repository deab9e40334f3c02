"""
Feed assembly.

  Global feed   │ every author's posts, newest first, with a promotional
                │ slot after every Nth post (N = settings.promo_interval).
  Personal feed │ one author's posts, newest first, no promotional slots;
                │ optionally grouped by course with read-only aggregates.

Also here:
  FeedLoader       — client-side holder of the displayed feed; sequences
                     requests so a slow stale response never replaces a
                     newer one, and keeps the last good feed on failure.
  FeedSubscription — Redis pub/sub listener that re-fetches the whole global
                     feed whenever the post collection changes.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from teefeed.config import settings
from teefeed.errors import FeedServiceError
from teefeed.models import as_utc
from teefeed.store import PostStore
from teefeed.telemetry import FEED_REFRESHES_TOTAL, SUPERSEDED_FEED_RESPONSES_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FeedItem:
    kind: str                 # 'post' | 'promo'
    post: Any = None
    slot: Optional[int] = None


@dataclass
class CourseGroup:
    course_name: str
    posts: list = field(default_factory=list)
    best_score: Optional[int] = None
    average_score: float = 0.0
    total_rounds: int = 0
    last_played: Optional[datetime] = None


def _created_at(post) -> datetime:
    return as_utc(post.created_at)


def sort_by_recency(posts: Sequence) -> list:
    return sorted(posts, key=_created_at, reverse=True)


def interleave_promotions(posts: Sequence, every: int = 4) -> list[FeedItem]:
    """
    Emit posts in order, adding a promo slot right after post k whenever
    k (1-based) is a multiple of `every`. Nothing precedes the first post,
    and fewer than `every` posts yields no slots at all.
    """
    if every < 1:
        raise ValueError("promo interval must be at least 1")

    items: list[FeedItem] = []
    slot = 0
    for k, post in enumerate(posts, start=1):
        items.append(FeedItem(kind="post", post=post))
        if k % every == 0:
            slot += 1
            items.append(FeedItem(kind="promo", slot=slot))
    return items


def _numeric_score(score: str) -> Optional[int]:
    score = score.strip()
    if score and all("0" <= ch <= "9" for ch in score):
        return int(score)
    return None


def course_stats(posts: Sequence) -> tuple[Optional[int], float, int]:
    """(best score, average score to 2 dp, rounds with a numeric score)."""
    scores = [s for s in (_numeric_score(p.score) for p in posts) if s is not None]
    if not scores:
        return None, 0.0, 0
    return min(scores), round(sum(scores) / len(scores), 2), len(scores)


def group_by_course(posts: Sequence) -> list[CourseGroup]:
    """Groups ordered by course name; posts within a group newest first."""
    by_course: dict[str, list] = {}
    for post in posts:
        by_course.setdefault(post.title, []).append(post)

    groups = []
    for name in sorted(by_course):
        course_posts = sort_by_recency(by_course[name])
        best, average, rounds = course_stats(course_posts)
        groups.append(
            CourseGroup(
                course_name=name,
                posts=course_posts,
                best_score=best,
                average_score=average,
                total_rounds=rounds,
                last_played=_created_at(course_posts[0]),
            )
        )
    return groups


class FeedAssembler:
    def __init__(self, store: PostStore, promo_interval: Optional[int] = None) -> None:
        self.store = store
        self.promo_interval = settings.promo_interval if promo_interval is None else promo_interval

    async def global_posts(self) -> list:
        return sort_by_recency(await self.store.list_all_posts())

    def assemble_global(self, posts: Sequence) -> list[FeedItem]:
        return interleave_promotions(posts, self.promo_interval)

    async def global_feed(self) -> list[FeedItem]:
        return self.assemble_global(await self.global_posts())

    async def personal_feed(self, author_id: str) -> list:
        return sort_by_recency(await self.store.list_posts_by_author(author_id))

    async def course_groups(self, author_id: str) -> list[CourseGroup]:
        return group_by_course(await self.store.list_posts_by_author(author_id))


class FeedLoader(Generic[T]):
    """
    Holds the feed a client is showing.

    Every load() takes the next sequence number. A response is applied only
    if no later-issued request has been applied already; otherwise it is
    dropped. A failed load keeps the previous feed and sets error_message.
    """

    def __init__(self, fetch: Callable[[], Awaitable[T]]) -> None:
        self._fetch = fetch
        self._issued = 0
        self._applied = 0
        self.feed: Optional[T] = None
        self.error_message: Optional[str] = None

    async def load(self) -> Optional[T]:
        self._issued += 1
        seq = self._issued
        try:
            result = await self._fetch()
        except FeedServiceError as exc:
            if seq > self._applied:
                self.error_message = exc.message
            logger.warning("Feed load #%d failed: %s", seq, exc.message)
            return self.feed

        if seq < self._applied:
            SUPERSEDED_FEED_RESPONSES_TOTAL.inc()
            logger.info("Dropping feed response #%d, #%d already shown", seq, self._applied)
            return self.feed

        self._applied = seq
        self.feed = result
        self.error_message = None
        return result


class FeedSubscription:
    """
    Live global feed.

    Any message on the change channel triggers a full re-fetch through
    `fetch`, handed to `on_update`. Refresh failures are logged and the
    subscription keeps listening. aclose() stops the listener and releases
    the pub/sub connection.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        fetch: Callable[[], Awaitable[list[FeedItem]]],
        on_update: Callable[[list[FeedItem]], Any],
        channel: Optional[str] = None,
    ) -> None:
        self._redis = redis
        self._fetch = fetch
        self._on_update = on_update
        self._channel = channel or settings.feed_changes_channel
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._task = asyncio.create_task(self._listen())
        logger.info("Feed subscription listening on %s", self._channel)

    async def _listen(self) -> None:
        try:
            while True:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message.get("type") != "message":
                    continue
                await self.refresh()
        except RedisConnectionError as exc:
            logger.error("Feed subscription lost its connection: %s", exc)

    async def refresh(self) -> None:
        try:
            items = await self._fetch()
        except Exception as exc:
            logger.warning("Feed refresh failed: %s", exc)
            return
        FEED_REFRESHES_TOTAL.inc()
        result = self._on_update(items)
        if asyncio.iscoroutine(result):
            await result

    async def aclose(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
            self._pubsub = None
        logger.info("Feed subscription on %s closed", self._channel)

    async def __aenter__(self) -> "FeedSubscription":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
