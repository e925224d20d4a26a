"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the timeline, cache, notification and realtime paths

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Gauge, Histogram

from chirp.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
TIMELINE_LATENCY = Histogram(
    "timeline_latency_seconds",
    "Latency of timeline assembly",
    ["source"],  # 'cache' or 'store'
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)

CACHE_LOOKUPS_TOTAL = Counter(
    "cache_lookups_total",
    "Cache reads by key prefix and outcome",
    ["prefix", "result"],  # result: 'hit' | 'miss' | 'error'
)

CACHE_INVALIDATIONS_TOTAL = Counter(
    "cache_invalidated_keys_total",
    "Number of cache keys removed by pattern invalidation",
)

TWEETS_CREATED_TOTAL = Counter(
    "tweets_created_total",
    "Total number of tweets created",
)

NOTIFICATIONS_CREATED_TOTAL = Counter(
    "notifications_created_total",
    "Persisted notifications by type",
    ["type"],
)

REALTIME_PUSH_TOTAL = Counter(
    "realtime_push_total",
    "Realtime push attempts by channel and outcome",
    ["channel", "outcome"],  # outcome: 'delivered' | 'offline' | 'timeout' | 'failed'
)

REALTIME_CONNECTIONS = Gauge(
    "realtime_connections",
    "Open websocket connections per channel",
    ["channel"],
)

EVENT_PUBLISH_ERRORS_TOTAL = Counter(
    "tweet_event_publish_errors_total",
    "Tweet events that could not be published (fan-out done inline instead)",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.otel_enabled:
        logger.info("OTel tracing disabled")
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
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
