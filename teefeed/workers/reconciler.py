"""
Like-count reconciler — periodic worker.

Every reconcile_interval_seconds:
  1. Count like-ledger rows per post.
  2. Overwrite like_count on every post whose counter disagrees.
  3. Announce each corrected post on the feed channel.

Why it exists:
  • like_count is a redundant counter written last-write-wins by clients.
    Two golfers liking at once can lose an increment, and a failed ledger
    write leaves the counter ahead of the ledger. The ledger is the truth;
    this loop pulls the counter back to it.

Run:  python -m teefeed.workers.reconciler
"""
import asyncio
import logging
import time

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from teefeed.clients.redis_client import close_redis, init_redis, publish_change
from teefeed.config import settings
from teefeed.database import AsyncSessionLocal, init_db
from teefeed.models import Post
from teefeed.store import LikeLedger, store_errors
from teefeed.telemetry import LIKE_COUNTS_RECONCILED_TOTAL, setup_tracing

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def reconcile_like_counts(db: AsyncSession, notify=publish_change) -> int:
    """Make like_count equal the ledger count for every post. Returns posts fixed."""
    with tracer.start_as_current_span("reconcile_like_counts") as span:
        t0 = time.perf_counter()
        ledger_counts = await LikeLedger(db).counts_by_post()

        with store_errors("reconcile_like_counts"):
            rows = await db.execute(select(Post.post_id, Post.author_id, Post.like_count))
            drifted = [
                (post_id, author_id, ledger_counts.get(post_id, 0))
                for post_id, author_id, like_count in rows.all()
                if like_count != ledger_counts.get(post_id, 0)
            ]
            for post_id, _, count in drifted:
                await db.execute(
                    update(Post).where(Post.post_id == post_id).values(like_count=count)
                )
            await db.commit()

        span.set_attribute("reconcile.fixed", len(drifted))
        LIKE_COUNTS_RECONCILED_TOTAL.inc(len(drifted))

        for post_id, author_id, count in drifted:
            logger.info("Post %s like_count corrected to %d", post_id, count)
            if notify is not None:
                try:
                    await notify("like_count_reconciled", author_id, post_id)
                except Exception as exc:
                    logger.warning("Change notification for post %s failed: %s", post_id, exc)

        logger.info(
            "Reconciled like counts: %d posts fixed (%.1fms)",
            len(drifted), (time.perf_counter() - t0) * 1000,
        )
        return len(drifted)


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    setup_tracing()
    await init_db()
    await init_redis()
    logger.info(
        "Reconciler running every %.0fs", settings.reconcile_interval_seconds
    )

    try:
        while True:
            try:
                async with AsyncSessionLocal() as db:
                    await reconcile_like_counts(db)
            except Exception as exc:
                logger.error("Reconcile pass failed: %s", exc)
            await asyncio.sleep(settings.reconcile_interval_seconds)
    finally:
        await close_redis()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    asyncio.run(main())
