"""Tests for the post store, like ledger and like-count reconciler."""

import pytest
from prometheus_client import REGISTRY

from teefeed.database import AsyncSessionLocal
from teefeed.errors import NotFound, PermissionDenied, Unauthenticated, ValidationFailed
from teefeed.models import Like, as_utc
from teefeed.schemas import PostCreate
from teefeed.store import LikeLedger, PostStore
from teefeed.workers.reconciler import reconcile_like_counts


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []

    async def __call__(self, event: str, author_id: str, post_id: str) -> None:
        self.events.append((event, author_id, post_id))


def round_fields(title: str = "Pebble Beach Golf Links", score: str = "72") -> PostCreate:
    return PostCreate(title=title, score=score, holes="18", greens_in_regulation="12")


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def store(db_session, clock, recorder) -> PostStore:
    return PostStore(db_session, notify=recorder, clock=clock)


@pytest.mark.asyncio
async def test_create_and_list_newest_first(store, recorder):
    first = await store.create_post("alice", round_fields("Augusta National Golf Club"), "Alice", "alice")
    second = await store.create_post("alice", round_fields("St. Andrews Links"), "Alice", "alice")
    other = await store.create_post("bob", round_fields("TPC Sawgrass"), "Bob", "bob")

    mine = await store.list_posts_by_author("alice")
    assert [p.post_id for p in mine] == [second, first]

    everyone = await store.list_all_posts()
    assert [p.post_id for p in everyone] == [other, second, first]

    assert recorder.events == [
        ("post_created", "alice", first),
        ("post_created", "alice", second),
        ("post_created", "bob", other),
    ]


@pytest.mark.asyncio
async def test_created_post_snapshots_author_and_starts_unliked(store, clock):
    post_id = await store.create_post("alice", round_fields(), "Alice Green", "alice_g")
    post = await store.get_post("alice", post_id)

    assert post.author_display_name == "Alice Green"
    assert post.author_username == "alice_g"
    assert post.like_count == 0
    assert post.holes == "18"
    assert as_utc(post.created_at) == clock.now


@pytest.mark.asyncio
async def test_create_requires_author(store, recorder):
    with pytest.raises(Unauthenticated):
        await store.create_post(None, round_fields())
    assert await store.list_all_posts() == []
    assert recorder.events == []


@pytest.mark.asyncio
async def test_get_post_is_scoped_by_author(store):
    post_id = await store.create_post("alice", round_fields())
    with pytest.raises(NotFound):
        await store.get_post("bob", post_id)
    with pytest.raises(NotFound):
        await store.get_post("alice", "missing")


@pytest.mark.asyncio
async def test_only_author_can_delete(db_session, store, recorder):
    post_id = await store.create_post("alice", round_fields())
    await LikeLedger(db_session).set_liked("alice", post_id, "bob", True)

    with pytest.raises(PermissionDenied):
        await store.delete_post("bob", "alice", post_id)
    with pytest.raises(Unauthenticated):
        await store.delete_post(None, "alice", post_id)
    assert (await store.get_post("alice", post_id)).post_id == post_id

    await store.delete_post("alice", "alice", post_id)
    with pytest.raises(NotFound):
        await store.get_post("alice", post_id)
    assert await LikeLedger(db_session).count_likes(post_id) == 0
    assert recorder.events[-1] == ("post_deleted", "alice", post_id)


@pytest.mark.asyncio
async def test_update_like_count_overwrites(store, recorder):
    post_id = await store.create_post("alice", round_fields())

    await store.update_like_count("alice", post_id, 5)
    await store.update_like_count("alice", post_id, 2)

    assert (await store.get_post("alice", post_id)).like_count == 2
    assert recorder.events[-1] == ("like_count_updated", "alice", post_id)


@pytest.mark.asyncio
async def test_update_like_count_rejects_negative_and_missing(store):
    post_id = await store.create_post("alice", round_fields())
    with pytest.raises(ValidationFailed):
        await store.update_like_count("alice", post_id, -1)
    with pytest.raises(NotFound):
        await store.update_like_count("alice", "missing", 1)
    with pytest.raises(NotFound):
        await store.update_like_count("bob", post_id, 1)


@pytest.mark.asyncio
async def test_set_liked_is_idempotent(db_session, store):
    post_id = await store.create_post("alice", round_fields())
    ledger = LikeLedger(db_session)

    await ledger.set_liked("alice", post_id, "bob", True)
    await ledger.set_liked("alice", post_id, "bob", True)
    assert await ledger.count_likes(post_id) == 1
    assert await ledger.is_liked("alice", post_id, "bob")

    await ledger.set_liked("alice", post_id, "bob", False)
    await ledger.set_liked("alice", post_id, "bob", False)
    assert await ledger.count_likes(post_id) == 0
    assert not await ledger.is_liked("alice", post_id, "bob")


@pytest.mark.asyncio
async def test_set_liked_does_not_touch_counter(db_session, store):
    post_id = await store.create_post("alice", round_fields())
    await LikeLedger(db_session).set_liked("alice", post_id, "bob", True)
    assert (await store.get_post("alice", post_id)).like_count == 0


@pytest.mark.asyncio
async def test_set_liked_on_missing_post(db_session):
    with pytest.raises(NotFound):
        await LikeLedger(db_session).set_liked("alice", "missing", "bob", True)


@pytest.mark.asyncio
async def test_liked_post_ids_for_a_page(db_session, store):
    a = await store.create_post("alice", round_fields())
    b = await store.create_post("alice", round_fields())
    c = await store.create_post("carol", round_fields())
    ledger = LikeLedger(db_session)
    await ledger.set_liked("alice", a, "bob", True)
    await ledger.set_liked("carol", c, "bob", True)
    await ledger.set_liked("alice", b, "dave", True)

    assert await ledger.liked_post_ids("bob", [a, b, c]) == {a, c}
    assert await ledger.liked_post_ids("bob", []) == set()


@pytest.mark.asyncio
async def test_refresh_author_snapshot(store):
    ids = [await store.create_post("alice", round_fields(), "Alice", "alice") for _ in range(2)]
    await store.create_post("bob", round_fields(), "Bob", "bob")

    with pytest.raises(PermissionDenied):
        await store.refresh_author_snapshot("bob", "alice", "Hacked", "hacked")

    touched = await store.refresh_author_snapshot("alice", "alice", "Alice Birdie", "birdie")
    assert touched == 2
    for post_id in ids:
        post = await store.get_post("alice", post_id)
        assert post.author_display_name == "Alice Birdie"
        assert post.author_username == "birdie"
    bob_post = (await store.list_posts_by_author("bob"))[0]
    assert bob_post.author_display_name == "Bob"


@pytest.mark.asyncio
async def test_reconciler_repairs_counter_drift(db_session, store):
    drifted = await store.create_post("alice", round_fields())
    accurate = await store.create_post("alice", round_fields())
    ledger = LikeLedger(db_session)
    for user in ("bob", "carol"):
        await ledger.set_liked("alice", drifted, user, True)
    await ledger.set_liked("alice", accurate, "bob", True)

    # Two concurrent likers both wrote 1: one increment lost
    await store.update_like_count("alice", drifted, 1)
    await store.update_like_count("alice", accurate, 1)

    notified = Recorder()
    fixed = await reconcile_like_counts(db_session, notify=notified)

    assert fixed == 1
    assert (await store.get_post("alice", drifted)).like_count == 2
    assert (await store.get_post("alice", accurate)).like_count == 1
    assert notified.events == [("like_count_reconciled", "alice", drifted)]

    assert await reconcile_like_counts(db_session, notify=None) == 0


@pytest.mark.asyncio
async def test_losing_a_duplicate_like_race_is_not_counted(db_session, store, monkeypatch):
    post_id = await store.create_post("alice", round_fields())
    await LikeLedger(db_session).set_liked("alice", post_id, "bob", True)

    def likes_recorded() -> float:
        return REGISTRY.get_sample_value("like_mutations_total", {"action": "like"}) or 0.0

    before = likes_recorded()
    async with AsyncSessionLocal() as racing:
        real_get = racing.get

        async def get_before_other_commit(entity, ident, **kwargs):
            # The other request's row is not visible yet when this one checks
            if entity is Like:
                return None
            return await real_get(entity, ident, **kwargs)

        monkeypatch.setattr(racing, "get", get_before_other_commit)
        await LikeLedger(racing).set_liked("alice", post_id, "bob", True)

    assert likes_recorded() == before
    assert await LikeLedger(db_session).count_likes(post_id) == 1
