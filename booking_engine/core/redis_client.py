"""
Redis Client - shared async singleton.

Used for the reconciliation sweep's single-flight lock.
"""
import asyncio
import secrets
from urllib.parse import urlparse

import redis.asyncio as aioredis

from booking_engine.core.config import settings
from booking_engine.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """Hide the password in REDIS_URL for logs (redis://:****@host:6379)"""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton (async, connection pool)"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on app shutdown"""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


# Delete only while the key still holds our token
_RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def acquire_lock(redis: aioredis.Redis, key: str, ttl_seconds: int) -> str | None:
    """
    SET NX EX with a random token.

    Returns the token when this caller now holds ``key`` for ``ttl_seconds``,
    None when someone else does.
    """
    token = secrets.token_hex(16)
    if await redis.set(key, token, nx=True, ex=ttl_seconds):
        return token
    return None


async def release_lock(redis: aioredis.Redis, key: str, token: str) -> bool:
    """
    Release ``key`` if it still holds ``token``.

    A holder whose lock expired must not delete the lock of whoever took it next.
    """
    released = bool(await redis.eval(_RELEASE_IF_OWNER, 1, key, token))
    if not released:
        logger.warning("Lock expired before release", extra_data={"key": key})
    return released
