"""
Async Kafka producer.

Publishes tweet lifecycle events to the 'tweet-events' topic:
  tweet.created | tweet.updated | tweet.deleted | tweet.retweeted

Consumed by: fanout-worker (chirp.workers.fanout), which invalidates the
cached timeline pages of every follower of the author.

When Kafka is disabled or unreachable, publish_tweet_event() returns False
and the caller performs the follower invalidation inline.
"""
import json
import logging
import time
from typing import Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from chirp.config import settings
from chirp.telemetry import EVENT_PUBLISH_ERRORS_TOTAL

logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None

TWEET_CREATED = "tweet.created"
TWEET_UPDATED = "tweet.updated"
TWEET_DELETED = "tweet.deleted"
TWEET_RETWEETED = "tweet.retweeted"


async def init_kafka() -> None:
    global _producer
    if not settings.kafka_enabled:
        logger.info("Kafka disabled — follower fan-out runs inline")
        return

    producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        key_serializer=lambda k: k.encode("utf-8"),
        acks="all",          # wait for all in-sync replicas
        enable_idempotence=True,
    )
    try:
        await producer.start()
    except KafkaError as exc:
        logger.warning(
            "Kafka unavailable at %s (%s) — follower fan-out runs inline",
            settings.kafka_bootstrap_servers,
            exc,
        )
        return

    _producer = producer
    logger.info(
        "Kafka producer started → %s", settings.kafka_bootstrap_servers
    )


async def stop_kafka() -> None:
    global _producer
    if _producer:
        await _producer.stop()
        _producer = None


def get_producer() -> Optional[AIOKafkaProducer]:
    return _producer


async def publish_tweet_event(event: str, tweet_id: str, author_id: str) -> bool:
    """
    Emit a tweet lifecycle event.

    Schema:
      { event, tweet_id, author_id, timestamp }

    Keyed by author_id so all events of one author land on one partition
    and are invalidated in order. Returns True if the broker acknowledged.
    """
    producer = get_producer()
    if producer is None:
        return False

    payload = {
        "event": event,
        "tweet_id": tweet_id,
        "author_id": author_id,
        "timestamp": int(time.time() * 1000),
    }
    try:
        await producer.send_and_wait(
            settings.kafka_topic_tweet_events, payload, key=author_id
        )
    except KafkaError as exc:
        logger.warning("Failed to publish %s for tweet %s: %s", event, tweet_id, exc)
        EVENT_PUBLISH_ERRORS_TOTAL.inc()
        return False

    logger.debug("Published %s event for tweet_id=%s", event, tweet_id)
    return True
