"""
Optimistic like/unlike.

A toggle changes the local count and flag immediately, then schedules two
independent remote writes without waiting for them:

  (a) update_like_count(author, post, <local count>)   — overwrite
  (b) set_liked(author, post, viewer, <local flag>)     — ledger

If (a) fails, the local change is reverted once, using the flag as it is
when the failure arrives: liked → unliked and -1, unliked → liked and +1.
Each toggle takes a fresh token; a failure carrying an older token than the
post's current one belongs to a toggle the viewer already superseded, and
is ignored. A failure of (b) is only logged. Nothing is retried.

Backends: FeedApiClient talks HTTP; LocalLikeBackend writes through the
store directly (gateway-side use).
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from teefeed.store import LikeLedger, PostStore
from teefeed.telemetry import LIKE_ROLLBACKS_TOTAL

logger = logging.getLogger(__name__)


class LikeState(str, Enum):
    UNLIKED = "unliked"
    LIKED = "liked"
    REVERTING = "reverting"


class LikeBackend(Protocol):
    async def update_like_count(self, author_id: str, post_id: str, like_count: int) -> None: ...

    async def set_liked(self, author_id: str, post_id: str, user_id: str, liked: bool) -> None: ...


@dataclass
class LocalPost:
    """What the viewer sees for one post."""
    post_id: str
    author_id: str
    like_count: int
    liked: bool = False
    state: LikeState = LikeState.UNLIKED
    token: int = 0

    def __post_init__(self) -> None:
        self.state = LikeState.LIKED if self.liked else LikeState.UNLIKED

    @classmethod
    def from_post(cls, post) -> "LocalPost":
        return cls(
            post_id=post.post_id,
            author_id=post.author_id,
            like_count=post.like_count,
            liked=getattr(post, "liked_by_viewer", False),
        )


class LikeCoordinator:
    def __init__(
        self,
        backend: LikeBackend,
        viewer_id: str,
        on_change: Optional[Callable[[LocalPost], None]] = None,
    ) -> None:
        self.backend = backend
        self.viewer_id = viewer_id
        self._on_change = on_change
        self._tokens = itertools.count(1)
        self._pending: set[asyncio.Task] = set()

    def _changed(self, post: LocalPost) -> None:
        if self._on_change is not None:
            self._on_change(post)

    def toggle(self, post: LocalPost) -> asyncio.Task:
        """Flip the viewer's like on `post` now; reconcile in the background."""
        post.liked = not post.liked
        post.like_count += 1 if post.liked else -1
        post.state = LikeState.LIKED if post.liked else LikeState.UNLIKED
        post.token = next(self._tokens)
        self._changed(post)

        task = asyncio.create_task(
            self._reconcile(post, post.token, post.liked, post.like_count)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def like(self, post: LocalPost) -> Optional[asyncio.Task]:
        return None if post.liked else self.toggle(post)

    def unlike(self, post: LocalPost) -> Optional[asyncio.Task]:
        return self.toggle(post) if post.liked else None

    async def drain(self) -> None:
        """Wait for every in-flight reconciliation."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _reconcile(self, post: LocalPost, token: int, liked: bool, count: int) -> None:
        await asyncio.gather(
            self._write_count(post, token, count),
            self._write_ledger(post, liked),
        )

    async def _write_count(self, post: LocalPost, token: int, count: int) -> None:
        try:
            await self.backend.update_like_count(post.author_id, post.post_id, count)
        except Exception as exc:
            logger.warning("Like count update for post %s failed: %s", post.post_id, exc)
            self._revert(post, token)

    async def _write_ledger(self, post: LocalPost, liked: bool) -> None:
        try:
            await self.backend.set_liked(post.author_id, post.post_id, self.viewer_id, liked)
        except Exception as exc:
            # Count stays as shown; the reconciler worker repairs the drift
            logger.warning(
                "Like ledger write for post %s (liked=%s) failed: %s", post.post_id, liked, exc
            )

    def _revert(self, post: LocalPost, token: int) -> None:
        if token != post.token:
            logger.info(
                "Ignoring failure of superseded toggle %d on post %s (current %d)",
                token, post.post_id, post.token,
            )
            return

        post.state = LikeState.REVERTING
        self._changed(post)
        if post.liked:
            post.liked = False
            post.like_count -= 1
            post.state = LikeState.UNLIKED
        else:
            post.liked = True
            post.like_count += 1
            post.state = LikeState.LIKED
        # A second failure report for this toggle must not revert again
        post.token = next(self._tokens)
        LIKE_ROLLBACKS_TOTAL.inc()
        self._changed(post)


class LocalLikeBackend:
    """LikeBackend writing straight to the store, one session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def update_like_count(self, author_id: str, post_id: str, like_count: int) -> None:
        async with self._session_factory() as db:
            await PostStore(db).update_like_count(author_id, post_id, like_count)

    async def set_liked(self, author_id: str, post_id: str, user_id: str, liked: bool) -> None:
        async with self._session_factory() as db:
            await LikeLedger(db).set_liked(author_id, post_id, user_id, liked)
