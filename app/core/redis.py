"""Redis connection and short-lived key locks."""

from typing import Optional

import redis.asyncio as redis

from app.core.config import settings

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Delete the key only while it still holds the caller's token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    return redis_client


async def acquire_lock(
    key: str,
    token: str,
    ttl_seconds: int,
    client: Optional[redis.Redis] = None,
) -> bool:
    """Take a lock with SET NX EX.

    Returns:
        True if the lock was taken, False if another holder owns it
    """
    client = client or redis_client
    return bool(await client.set(key, token, nx=True, ex=ttl_seconds))


async def get_lock_holder(key: str, client: Optional[redis.Redis] = None) -> Optional[str]:
    """Return the token of the current lock holder, if any."""
    client = client or redis_client
    return await client.get(key)


async def release_lock(key: str, token: str, client: Optional[redis.Redis] = None) -> bool:
    """Release a lock held by ``token``; a lock taken over by someone else is left alone."""
    client = client or redis_client
    return bool(await client.eval(_RELEASE_SCRIPT, 1, key, token))
