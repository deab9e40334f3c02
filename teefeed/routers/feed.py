"""
Feed endpoints:

  GET /feed                  │ global feed, newest first, promo slot after
                             │ every Nth post. Falls back to the last good
                             │ feed cached in Redis when the store is down.
  GET /feed/users/{id}       │ one golfer's rounds: chronological, or grouped
                             │ by course with best / average / round count.
  GET /feed/stream           │ server-sent events; one full feed per change
                             │ on the feed channel.
"""
import asyncio
import json
import logging
import time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from teefeed.clients.redis_client import get_cached_feed, get_redis, set_cached_feed
from teefeed.database import AsyncSessionLocal, get_db
from teefeed.errors import RemoteUnavailable
from teefeed.feed import FeedAssembler, FeedItem, FeedSubscription, group_by_course
from teefeed.identity import current_user_id
from teefeed.routers.posts import build_post_response
from teefeed.schemas import (
    CourseGroupResponse,
    FeedItemResponse,
    FeedResponse,
    PersonalFeedResponse,
    PostResponse,
)
from teefeed.store import LikeLedger, PostStore
from teefeed.telemetry import FEED_FALLBACK_TOTAL, FEED_LATENCY

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def _feed_response(items: list[FeedItem], stale: bool = False) -> FeedResponse:
    out = [
        FeedItemResponse(kind=item.kind, post=item.post, slot=item.slot) for item in items
    ]
    return FeedResponse(
        items=out,
        post_count=sum(1 for item in items if item.kind == "post"),
        stale=stale,
    )


async def _with_viewer_likes(
    db: AsyncSession, viewer_id: Optional[str], posts: list[PostResponse]
) -> list[PostResponse]:
    if not viewer_id or not posts:
        return posts
    liked = await LikeLedger(db).liked_post_ids(viewer_id, [p.post_id for p in posts])
    for p in posts:
        p.liked_by_viewer = p.post_id in liked
    return posts


async def _cache_feed(posts: list[PostResponse]) -> None:
    try:
        await set_cached_feed([p.model_dump(mode="json") for p in posts])
    except Exception as exc:
        logger.warning("Could not cache global feed: %s", exc)


async def _cached_posts() -> Optional[list[PostResponse]]:
    try:
        cached = await get_cached_feed()
    except Exception as exc:
        logger.warning("Feed cache unavailable: %s", exc)
        return None
    if cached is None:
        return None
    return [PostResponse(**p) for p in cached]


@router.get("/", response_model=FeedResponse)
async def get_feed(
    viewer_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()

    with tracer.start_as_current_span("get_feed") as span:
        assembler = FeedAssembler(PostStore(db))
        try:
            posts = [build_post_response(p) for p in await assembler.global_posts()]
        except RemoteUnavailable:
            cached = await _cached_posts()
            if cached is None:
                raise
            FEED_FALLBACK_TOTAL.inc()
            span.set_attribute("feed.stale", True)
            logger.warning("Post store unavailable, serving %d cached posts", len(cached))
            return _feed_response(assembler.assemble_global(cached), stale=True)

        await _cache_feed(posts)
        posts = await _with_viewer_likes(db, viewer_id, posts)
        items = assembler.assemble_global(posts)

        latency = time.time() - start_time
        FEED_LATENCY.observe(latency)
        span.set_attribute("feed.posts_returned", len(posts))
        span.set_attribute("feed.latency_ms", latency * 1000)
        return _feed_response(items)


@router.get("/users/{author_id}", response_model=PersonalFeedResponse)
async def get_personal_feed(
    author_id: str,
    mode: Literal["chronological", "by_course"] = Query("chronological"),
    viewer_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("get_personal_feed") as span:
        span.set_attribute("feed.author_id", author_id)
        span.set_attribute("feed.mode", mode)

        posts = await FeedAssembler(PostStore(db)).personal_feed(author_id)
        responses = await _with_viewer_likes(
            db, viewer_id, [build_post_response(p) for p in posts]
        )

        if mode == "chronological":
            return PersonalFeedResponse(author_id=author_id, mode=mode, posts=responses)

        groups = [
            CourseGroupResponse(
                course_name=g.course_name,
                posts=g.posts,
                best_score=g.best_score,
                average_score=g.average_score,
                total_rounds=g.total_rounds,
                last_played=g.last_played,
            )
            for g in group_by_course(responses)
        ]
        return PersonalFeedResponse(author_id=author_id, mode=mode, groups=groups)


async def _fresh_global_feed() -> list[FeedItem]:
    async with AsyncSessionLocal() as db:
        assembler = FeedAssembler(PostStore(db))
        posts = [build_post_response(p) for p in await assembler.global_posts()]
        return assembler.assemble_global(posts)


def _sse(items: list[FeedItem]) -> str:
    return f"data: {_feed_response(items).model_dump_json()}\n\n"


def _keep_latest(queue: asyncio.Queue, items: list[FeedItem]) -> None:
    # Every update is a complete feed, so an unread one is simply replaced
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(items)


@router.get("/stream")
async def stream_feed():
    """
    Live global feed as server-sent events. Sends the current feed, then a
    complete fresh feed after each change. Disconnecting closes the
    subscription and its Redis connection.
    """
    updates: asyncio.Queue[list[FeedItem]] = asyncio.Queue(maxsize=1)
    subscription = FeedSubscription(
        get_redis(), _fresh_global_feed, lambda items: _keep_latest(updates, items)
    )

    async def events():
        await subscription.start()
        try:
            yield _sse(await _fresh_global_feed())
            while True:
                yield _sse(await updates.get())
        except RemoteUnavailable as exc:
            yield f"event: error\ndata: {json.dumps({'detail': exc.message})}\n\n"
        finally:
            await subscription.aclose()

    return StreamingResponse(events(), media_type="text/event-stream")
