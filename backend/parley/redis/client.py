"""
Process-wide Redis client.

init_redis() is awaited from the app lifespan.  An empty REDIS_URL, or a
server that does not answer the startup ping, leaves the client unset; from
then on get_redis() returns None and callers fall back: presence reads as
offline and realtime events stay on this worker's sockets.
"""

import logging

import redis.asyncio as aioredis

from parley.config import settings

logger = logging.getLogger(__name__)

MAX_CONNECTIONS = 20

_pool: aioredis.ConnectionPool | None = None
_client: aioredis.Redis | None = None


async def init_redis() -> None:
    global _pool, _client
    if not settings.REDIS_URL:
        logger.info("Redis disabled: REDIS_URL is not set")
        return
    _pool = aioredis.ConnectionPool.from_url(
        settings.REDIS_URL, decode_responses=True, max_connections=MAX_CONNECTIONS
    )
    client = aioredis.Redis(connection_pool=_pool)
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("Redis at %s not reachable, running without it: %s", settings.REDIS_URL, exc)
        return
    _client = client
    logger.info("Redis connected: %s", settings.REDIS_URL)


async def close_redis() -> None:
    global _pool, _client
    if _client is not None:
        await _client.aclose()
        _client = None
    if _pool is not None:
        await _pool.aclose()
        _pool = None


def get_redis() -> aioredis.Redis | None:
    return _client


async def ping() -> bool:
    """True when Redis is configured and answering.  Used by /health."""
    r = get_redis()
    if r is None:
        return False
    try:
        return bool(await r.ping())
    except Exception as exc:
        logger.warning("redis ping failed: %s", exc)
        return False


async def publish(channel: str, message: str) -> None:
    """Publish on a pub/sub channel.  Raises if Redis is down or the call fails."""
    r = get_redis()
    if r is None:
        raise ConnectionError("Redis is not available")
    await r.publish(channel, message)
