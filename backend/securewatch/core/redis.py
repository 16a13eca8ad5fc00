"""
redis.py - Redis client for the asynchronous ingestion path.

A Redis Stream is the write-ahead log between the API (producer, which
accepts scored-message batches from connectors) and the ingestion worker
(consumer, which records violations and feeds the behavioral queue).
"""

import logging
from functools import lru_cache

import redis

from securewatch.config import settings

logger = logging.getLogger(__name__)

# Stream and consumer group constants
STREAM_NAME = "securewatch:violations:ingest"
DLQ_STREAM_NAME = "securewatch:violations:dlq"
CONSUMER_GROUP = "ingestion-workers"
MAX_RETRIES = 3


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """
    Get singleton Redis client.

    Raises:
        redis.ConnectionError: If Redis is unreachable.
    """
    client = redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    client.ping()
    logger.info("Redis client connected to %s", settings.REDIS_URL)
    return client


def ensure_consumer_group(client: redis.Redis) -> None:
    """Create the consumer group if missing. Idempotent."""
    try:
        client.xgroup_create(STREAM_NAME, CONSUMER_GROUP, id="0", mkstream=True)
        logger.info("Created consumer group '%s' on stream '%s'", CONSUMER_GROUP, STREAM_NAME)
    except redis.ResponseError as e:
        if "BUSYGROUP" in str(e):
            logger.debug("Consumer group '%s' already exists", CONSUMER_GROUP)
        else:
            raise
