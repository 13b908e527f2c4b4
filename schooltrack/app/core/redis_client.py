"""
Shared Redis client. Only token revocation lives in Redis; realtime
fanout is in-process.
"""

import logging

import redis.asyncio as redis
from schooltrack.app.core.config import settings

logger = logging.getLogger(__name__)

# Connects lazily on the first command
client = redis.from_url(settings.redis_url, decode_responses=settings.redis_decode_responses)


async def get_redis():
    return client


async def ping_redis() -> bool:
    try:
        return bool(await client.ping())
    except redis.RedisError as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    await client.aclose()
