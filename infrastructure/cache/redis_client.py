"""Async Redis connection factory.

Returns an async redis.Redis client, or None if the connection fails.
The only Redis consumer is the password-recovery throttle, which treats
None as "no limit".
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from shared.logging import get_logger

log = get_logger(__name__)


async def create_redis_client(redis_uri: str) -> Optional[aioredis.Redis]:
    """Connect to Redis and return a client, or None on failure."""
    host = redis_uri.split("@")[-1]  # drop credentials
    client: aioredis.Redis = aioredis.from_url(redis_uri, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        log.warning(
            "redis_connection_failed", host=host, error_type=type(e).__name__
        )
        await client.aclose()
        return None
    log.info("redis_connected", host=host)
    return client
