"""Tests for optimistic like/unlike with rollback."""

import asyncio

import pytest

from teefeed.coordinator import LikeCoordinator, LikeState, LocalLikeBackend, LocalPost
from teefeed.database import AsyncSessionLocal
from teefeed.errors import RemoteUnavailable
from teefeed.schemas import PostCreate
from teefeed.store import LikeLedger, PostStore
from teefeed.workers.reconciler import reconcile_like_counts


class FakeBackend:
    """Records writes; each call can be held on an Event and made to fail."""

    def __init__(self) -> None:
        self.count_writes: list[int] = []
        self.ledger_writes: list[bool] = []
        self.fail_counts = False
        self.failing_counts: set[int] = set()
        self.fail_ledger = False
        self.gate: asyncio.Event | None = None

    async def update_like_count(self, author_id, post_id, like_count):
        if self.gate is not None:
            await self.gate.wait()
        self.count_writes.append(like_count)
        if self.fail_counts or like_count in self.failing_counts:
            raise RemoteUnavailable()

    async def set_liked(self, author_id, post_id, user_id, liked):
        if self.gate is not None:
            await self.gate.wait()
        self.ledger_writes.append(liked)
        if self.fail_ledger:
            raise RemoteUnavailable()


def a_post(like_count: int = 3, liked: bool = False) -> LocalPost:
    return LocalPost(post_id="p1", author_id="alice", like_count=like_count, liked=liked)


@pytest.mark.asyncio
async def test_toggle_applies_locally_before_remote_writes():
    backend = FakeBackend()
    backend.gate = asyncio.Event()
    seen = []
    coordinator = LikeCoordinator(backend, "bob", on_change=lambda p: seen.append((p.liked, p.like_count)))
    post = a_post()

    coordinator.toggle(post)
    assert post.liked is True
    assert post.like_count == 4
    assert post.state is LikeState.LIKED
    assert seen == [(True, 4)]
    assert backend.count_writes == []

    backend.gate.set()
    await coordinator.drain()
    assert backend.count_writes == [4]
    assert backend.ledger_writes == [True]


@pytest.mark.asyncio
async def test_unlike_writes_decremented_count():
    backend = FakeBackend()
    coordinator = LikeCoordinator(backend, "bob")
    post = a_post(like_count=4, liked=True)
    assert post.state is LikeState.LIKED

    coordinator.unlike(post)
    await coordinator.drain()

    assert (post.liked, post.like_count) == (False, 3)
    assert backend.count_writes == [3]
    assert backend.ledger_writes == [False]


@pytest.mark.asyncio
async def test_like_and_unlike_are_noops_when_already_in_state():
    coordinator = LikeCoordinator(FakeBackend(), "bob")
    assert coordinator.unlike(a_post(liked=False)) is None
    assert coordinator.like(a_post(liked=True)) is None


@pytest.mark.asyncio
async def test_count_failure_rolls_back_once():
    backend = FakeBackend()
    backend.fail_counts = True
    states = []
    coordinator = LikeCoordinator(backend, "bob", on_change=lambda p: states.append(p.state))
    post = a_post(like_count=3)

    await coordinator.toggle(post)

    assert post.liked is False
    assert post.like_count == 3
    assert post.state is LikeState.UNLIKED
    assert states == [LikeState.LIKED, LikeState.REVERTING, LikeState.UNLIKED]
    # The ledger write was still issued and is not undone
    assert backend.ledger_writes == [True]


@pytest.mark.asyncio
async def test_like_then_unlike_with_failing_like_ends_unliked():
    backend = FakeBackend()
    backend.gate = asyncio.Event()
    backend.failing_counts = {4}
    coordinator = LikeCoordinator(backend, "bob")
    post = a_post(like_count=3)

    coordinator.toggle(post)   # like writes 4, which fails
    coordinator.toggle(post)   # unlike writes 3

    backend.gate.set()
    await coordinator.drain()

    assert (post.liked, post.like_count) == (False, 3)
    assert post.state is LikeState.UNLIKED


@pytest.mark.asyncio
async def test_failure_of_superseded_toggle_is_ignored():
    backend = FakeBackend()
    backend.gate = asyncio.Event()
    backend.fail_counts = True
    coordinator = LikeCoordinator(backend, "bob")
    post = a_post(like_count=3)

    coordinator.toggle(post)   # like: 4
    coordinator.toggle(post)   # unlike: 3
    assert (post.liked, post.like_count) == (False, 3)

    backend.gate.set()
    await coordinator.drain()

    # Only the latest toggle's failure reverts: back to liked, never double-counted
    assert (post.liked, post.like_count) == (True, 4)
    assert post.state is LikeState.LIKED
    assert sorted(backend.count_writes) == [3, 4]


@pytest.mark.asyncio
async def test_ledger_failure_keeps_local_state():
    backend = FakeBackend()
    backend.fail_ledger = True
    coordinator = LikeCoordinator(backend, "bob")
    post = a_post(like_count=0)

    await coordinator.toggle(post)

    assert (post.liked, post.like_count) == (True, 1)
    assert post.state is LikeState.LIKED
    assert backend.count_writes == [1]


@pytest.mark.asyncio
async def test_from_post_reads_viewer_flag():
    class Row:
        post_id = "p9"
        author_id = "carol"
        like_count = 7
        liked_by_viewer = True

    local = LocalPost.from_post(Row())
    assert (local.post_id, local.author_id, local.like_count, local.liked) == ("p9", "carol", 7, True)
    assert local.state is LikeState.LIKED


@pytest.mark.asyncio
async def test_local_backend_writes_through_store(db_session, fake_redis):
    post_id = await PostStore(db_session, notify=None).create_post(
        "alice", PostCreate(title="Pebble Beach Golf Links", score="74")
    )
    coordinator = LikeCoordinator(LocalLikeBackend(AsyncSessionLocal), "bob")
    post = LocalPost(post_id=post_id, author_id="alice", like_count=0)

    await coordinator.toggle(post)

    async with AsyncSessionLocal() as db:
        stored = await PostStore(db, notify=None).get_post("alice", post_id)
        assert stored.like_count == 1
        assert await LikeLedger(db).is_liked("alice", post_id, "bob")


@pytest.mark.asyncio
async def test_concurrent_likers_lose_an_update_until_reconciled(db_session, fake_redis):
    post_id = await PostStore(db_session, notify=None).create_post(
        "alice", PostCreate(title="Augusta National Golf Club", score="80")
    )
    backend = LocalLikeBackend(AsyncSessionLocal)
    # Both viewers loaded the post at like_count 0
    bob = LikeCoordinator(backend, "bob")
    carol = LikeCoordinator(backend, "carol")
    bob_view = LocalPost(post_id=post_id, author_id="alice", like_count=0)
    carol_view = LocalPost(post_id=post_id, author_id="alice", like_count=0)

    await asyncio.gather(bob.toggle(bob_view), carol.toggle(carol_view))

    async with AsyncSessionLocal() as db:
        assert (await PostStore(db, notify=None).get_post("alice", post_id)).like_count == 1
        assert await LikeLedger(db).count_likes(post_id) == 2

        assert await reconcile_like_counts(db, notify=None) == 1
        assert (await PostStore(db, notify=None).get_post("alice", post_id)).like_count == 2
