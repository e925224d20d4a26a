"""
Fan-out Worker — Kafka consumer.

For every event on the tweet-events topic:
  1. Query the store for all followers of the tweet author.
  2. Drop every cached timeline page those followers own, so their next
     read is rebuilt with the new / changed / removed tweet.

Timelines are pulled on read and cached briefly, so fan-out here is pure
invalidation; nothing is written into follower mailboxes.
"""
import asyncio
import json
import logging
import time

import redis.asyncio as aioredis
from aiokafka import AIOKafkaConsumer
from opentelemetry import trace
from sqlalchemy.ext.asyncio import async_sessionmaker

from chirp.clients.kafka_producer import (
    TWEET_CREATED,
    TWEET_DELETED,
    TWEET_RETWEETED,
    TWEET_UPDATED,
)
from chirp.clients.redis_client import CacheClient, set_cache
from chirp.config import settings
from chirp.database import AsyncSessionLocal, engine
from chirp.services.timeline import TimelineService
from chirp.telemetry import setup_tracing

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

KNOWN_EVENTS = {TWEET_CREATED, TWEET_UPDATED, TWEET_DELETED, TWEET_RETWEETED}


# ─────────────────────────── Message Handler ─────────────────────────────

async def process_message(
    msg: dict,
    session_factory: async_sessionmaker,
    cache: CacheClient,
) -> int:
    """Invalidate the timelines of the author's followers; returns keys removed."""
    event = msg.get("event")
    tweet_id = msg.get("tweet_id")
    author_id = msg.get("author_id")

    if not tweet_id or not author_id:
        logger.warning("Malformed tweet event: %s", msg)
        return 0
    if event not in KNOWN_EVENTS:
        logger.warning("Unknown tweet event %r for tweet %s", event, tweet_id)
        return 0

    with tracer.start_as_current_span("fanout") as span:
        span.set_attribute("tweet.id", tweet_id)
        span.set_attribute("tweet.author_id", author_id)
        span.set_attribute("tweet.event", event)

        t0 = time.perf_counter()
        async with session_factory() as session:
            removed = await TimelineService(session, cache).invalidate_followers(author_id)
        elapsed = (time.perf_counter() - t0) * 1000

        span.set_attribute("fanout.keys_removed", removed)
        logger.info(
            "Fan-out complete: %s %s → %d timeline pages dropped (%.1fms)",
            event, tweet_id, removed, elapsed,
        )
        return removed


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    setup_tracing()

    redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password or None,
        decode_responses=True,
    )
    await redis.ping()
    cache = CacheClient(redis, key_prefix=settings.redis_key_prefix)
    set_cache(cache)

    consumer = AIOKafkaConsumer(
        settings.kafka_topic_tweet_events,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        auto_offset_reset="earliest",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
    )
    await consumer.start()
    logger.info(
        "Fan-out worker listening on topic '%s'", settings.kafka_topic_tweet_events
    )

    try:
        async for msg in consumer:
            try:
                await process_message(msg.value, AsyncSessionLocal, cache)
            except Exception as exc:
                logger.error("Fan-out error for %s: %s", msg.value, exc)
    finally:
        await consumer.stop()
        await engine.dispose()
        await redis.aclose()


if __name__ == "__main__":
    asyncio.run(main())
