"""Redis helper utilities.

Key naming conventions:
    ``visitor:record:{id}``     - hash storing the visitor request fields.
    ``visitor:token:{token}``   - decision token -> visitor id.
    ``visitor:code:{code}``     - visitor code -> visitor id (uniqueness claim).
    ``visitor:created``         - sorted set of ids scored by creation time.
    ``visitor:pending``         - sorted set of pending ids scored by expiry.
"""

import os
from typing import Optional

import redis as redis_sync
from loguru import logger
from redis.exceptions import RedisError

from config import config as shared_config


def decode_map(data: dict) -> dict[str, str]:
    """Return ``data`` with ``bytes`` keys and values decoded to ``str``."""
    return {
        (k.decode() if isinstance(k, bytes) else k): (
            v.decode() if isinstance(v, bytes) else v
        )
        for k, v in data.items()
    }


def decode_value(value) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode()
    return value


def get_sync_client(url: Optional[str] = None) -> redis_sync.Redis:
    """Return a synchronous Redis client.

    The URL is resolved from the given argument, the shared configuration, or
    the ``REDIS_URL`` environment variable. Responses are decoded to ``str``
    automatically.
    """
    url = (
        url
        or shared_config.get("redis_url")
        or os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    try:
        client = redis_sync.Redis.from_url(url, decode_responses=True)
        client.ping()
    except (RedisError, OSError) as e:
        logger.error("Failed to connect to Redis at {}: {}", url, e)
        raise
    return client
