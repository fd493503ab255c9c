# app/core/redis.py
"""
Redis connection utilities.
Redis is used for:
- Sharing the resolved-permission cache between API workers

The app should boot even if Redis is unavailable (degraded mode); the
permission cache then falls back to the in-process backend.
"""

import logging
from functools import lru_cache
from typing import Optional

import redis

from app.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client instance.
    Returns None if Redis is not configured or unavailable.
    """
    settings = get_settings()

    if not settings.redis_url:
        logger.warning("REDIS_URL not set. Redis features will be disabled.")
        return None

    try:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Test connection
        client.ping()
        logger.info("Redis connection established successfully.")
        return client
    except redis.RedisError as e:
        logger.warning(
            f"Failed to connect to Redis: {e}. Running in degraded mode (no shared cache)."
        )
        return None
