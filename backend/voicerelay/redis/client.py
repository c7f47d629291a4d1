"""
Redis connection for the shared signaling store.

One pool per process, opened in the app lifespan.  When REDIS_URL is empty
or the server does not answer the first PING, get_redis() returns None and
deps.configure_store() falls back to the in-process memory backend, which
only works for a single worker.
"""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from voicerelay.config import settings

logger = logging.getLogger(__name__)

_pool: aioredis.ConnectionPool | None = None
_client: aioredis.Redis | None = None


async def _connect(url: str) -> aioredis.Redis:
    global _pool
    _pool = aioredis.ConnectionPool.from_url(
        url,
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    client = aioredis.Redis(connection_pool=_pool)
    await client.ping()
    return client


async def init_redis() -> None:
    """Open the pool and check it answers.  Call once at app startup."""
    global _client
    if not settings.REDIS_URL:
        logger.info("REDIS_URL is empty; voice sessions stay in process memory")
        return
    try:
        _client = await _connect(settings.REDIS_URL)
    except (RedisError, OSError) as exc:
        logger.warning("Redis unavailable (%s); falling back to in-memory voice sessions", exc)
        await close_redis()
        return
    logger.info("Redis connected: %s", settings.REDIS_URL)


async def close_redis() -> None:
    """Release the pool.  Call once at app shutdown."""
    global _pool, _client
    client, _client = _client, None
    pool, _pool = _pool, None
    if client is not None:
        await client.aclose()
    if pool is not None:
        await pool.aclose()


def get_redis() -> aioredis.Redis | None:
    """The live client, or None when Redis is disabled or was unreachable at startup."""
    return _client


async def redis_healthy() -> bool:
    if _client is None:
        return False
    try:
        return bool(await _client.ping())
    except RedisError as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False
