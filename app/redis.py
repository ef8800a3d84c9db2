import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.asyncio import Redis

from app.config import settings

REDIS_URL: str = settings.REDIS_URL

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


def init_redis():
    global redis_client
    logger.info("Initializing Redis connection %s", REDIS_URL)
    if not redis_client:
        redis_client = Redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
    return redis_client


@asynccontextmanager
async def redis_lock(key: str, ttl: int) -> AsyncIterator[bool]:
    """Yield True when this caller holds `key`, False when another worker does.

    Without a Redis connection (tests, single-process dev) the lock is not taken
    and the caller proceeds.
    """
    if not redis_client:
        logger.warning("Redis not initialized, running %s without a lock", key)
        yield True
        return

    locked = await redis_client.set(key, "1", nx=True, ex=ttl)
    if not locked:
        yield False
        return

    try:
        yield True
    finally:
        await redis_client.delete(key)
