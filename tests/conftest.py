"""Shared fixtures: a throwaway SQLite store, a fake Redis, and ASGI clients."""

import os
import tempfile

# Settings are read at import time, so point them at test resources first.
os.environ["DATABASE_URL"] = (
    f"sqlite+aiosqlite:///{tempfile.gettempdir()}/teefeed-test-{os.getpid()}.db"
)
os.environ["TRACING_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone  # noqa: E402

import fakeredis  # noqa: E402
import fakeredis.aioredis  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402

from teefeed.client import FeedApiClient  # noqa: E402
from teefeed.clients.redis_client import set_redis  # noqa: E402
from teefeed.database import AsyncSessionLocal, Base, engine  # noqa: E402
from teefeed.main import app  # noqa: E402


class StepClock:
    """Deterministic created_at values, one minute apart."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def fake_redis():
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    set_redis(client)
    yield client
    set_redis(None)
    await client.aclose()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
async def async_client(db_engine, fake_redis):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def api_client(db_engine, fake_redis):
    """Factory for FeedApiClient instances signed in as a given user."""
    clients: list[FeedApiClient] = []

    async def make(user_id: str | None) -> FeedApiClient:
        client = FeedApiClient(
            user_id, base_url="http://test", transport=httpx.ASGITransport(app=app)
        )
        await client.start()
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.stop()
