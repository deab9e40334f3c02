"""
TeeFeed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP), unless disabled
  2. Create tables if not present
  3. Connect to Redis (change channel + last-known-good feed cache)
  4. Expose Prometheus /metrics endpoint

Run with:  uvicorn teefeed.main:app
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from teefeed.config import settings
from teefeed.database import init_db
from teefeed.errors import FeedServiceError, ValidationFailed
from teefeed.telemetry import setup_tracing, instrument_app
from teefeed.clients.redis_client import close_redis, init_redis
from teefeed.routers import feed, posts, users

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting TeeFeed API (env=%s)", settings.environment)

    await init_db()
    await init_redis()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await close_redis()


app = FastAPI(
    title="TeeFeed API",
    description=(
        "Golf round social feed: shared rounds, likes with optimistic "
        "reconciliation, and a global feed with promotional slots."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(FeedServiceError)
async def feed_service_error_handler(request: Request, exc: FeedServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    content = {"detail": exc.message}
    if isinstance(exc, ValidationFailed) and exc.field:
        content["field"] = exc.field
    return JSONResponse(status_code=exc.status_code, content=content)


# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics — scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
