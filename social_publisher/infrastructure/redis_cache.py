# social_publisher/infrastructure/redis_cache.py
import os
from typing import Optional

import redis.asyncio as aioredis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_client: Optional[aioredis.Redis] = None


def get_redis() -> aioredis.Redis:
    """Shared client for rate-limit counters; created on first use."""
    global _client
    if _client is None:
        _client = aioredis.from_url(REDIS_URL, decode_responses=True)
    return _client
