"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for feed latency, like traffic and reconciliation

Tracing is initialised once at startup (skipped when TRACING_ENABLED=false)
and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

from teefeed.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "End-to-end latency of GET /feed",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

FEED_FALLBACK_TOTAL = Counter(
    "feed_fallback_total",
    "Global feed requests served from the last-known-good cache",
)

FEED_REFRESHES_TOTAL = Counter(
    "feed_refreshes_total",
    "Full global feed re-fetches triggered by a change notification",
)

SUPERSEDED_FEED_RESPONSES_TOTAL = Counter(
    "superseded_feed_responses_total",
    "Feed responses discarded because a newer request had been issued",
)

POST_CREATED_TOTAL = Counter(
    "post_created_total",
    "Total number of rounds posted",
)

LIKE_MUTATIONS_TOTAL = Counter(
    "like_mutations_total",
    "Like ledger writes",
    ["action"],  # 'like' or 'unlike'
)

LIKE_ROLLBACKS_TOTAL = Counter(
    "like_rollbacks_total",
    "Optimistic like/unlike changes reverted after a failed count update",
)

LIKE_COUNTS_RECONCILED_TOTAL = Counter(
    "like_counts_reconciled_total",
    "Posts whose like_count was corrected from the like ledger",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.tracing_enabled:
        logger.info("Tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument popular libraries so their spans appear in traces
    HTTPXClientInstrumentor().instrument()
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)
