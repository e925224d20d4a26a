"""
Chirp API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool & create tables if not present
  3. Start Kafka producer (tweet lifecycle events)
  4. Connect to Redis (read-through cache)
  5. Expose Prometheus /metrics endpoint
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from starlette.exceptions import HTTPException as StarletteHTTPException

from chirp.clients.kafka_producer import init_kafka, stop_kafka
from chirp.clients.redis_client import close_redis, init_redis
from chirp.config import settings
from chirp.database import init_db
from chirp.errors import ChirpError
from chirp.routers import (
    bookmarks,
    messages,
    notifications,
    polls,
    realtime,
    search,
    tweets,
    users,
)
from chirp.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Chirp API (env=%s)", settings.environment)

    await init_db()
    await init_kafka()
    await init_redis()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await stop_kafka()
    await close_redis()


app = FastAPI(
    title="Chirp API",
    description=(
        "Microblogging backend: social graph, cached timelines, engagement, "
        "polls, notifications and realtime delivery."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


# ── Error envelope ─────────────────────────────────────────────────────────
def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Server Error"


def error_response(request: Request, status_code: int, err) -> JSONResponse:
    """Render `{statusCode, timestamp, path, message, err}`."""
    body = {
        "statusCode": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
        "message": _phrase(status_code),
        "err": err,
    }
    http_status = status_code
    if settings.legacy_error_status and status_code in (
        status.HTTP_401_UNAUTHORIZED,
        status.HTTP_403_FORBIDDEN,
    ):
        http_status = status.HTTP_200_OK
    return JSONResponse(status_code=http_status, content=jsonable_encoder(body))


@app.exception_handler(ChirpError)
async def chirp_error_handler(request: Request, exc: ChirpError):
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc
        )
    return error_response(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(request, exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, exc.errors())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Server Error")


# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(tweets.router, prefix="/tweets", tags=["Tweets"])
app.include_router(polls.router, prefix="/polls", tags=["Polls"])
app.include_router(bookmarks.router, prefix="/bookmarks", tags=["Bookmarks"])
app.include_router(messages.router, prefix="/messages", tags=["Messages"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(search.router, prefix="/search", tags=["Search"])
app.include_router(realtime.router, tags=["Realtime"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
