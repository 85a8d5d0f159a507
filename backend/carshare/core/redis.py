# backend/carshare/core/redis.py
"""
Shared synchronous Redis client.

Used by the booking mutex and the idempotency cache. Both callers fail
open: when Redis is not configured or unreachable they log a warning and
carry on with database locking alone.
"""

import logging
import threading
from typing import Optional

from redis import Redis

from .config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None
_redis_lock = threading.Lock()


def get_redis_client() -> Optional[Redis]:
    """
    Return a connected Redis client, or ``None`` when Redis is unavailable.

    The client is created lazily and reused for the life of the process.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client
    if not settings.redis_url:
        return None

    with _redis_lock:
        if _redis_client is not None:
            return _redis_client
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("[REDIS] unavailable: %s", exc)
            return None
        _redis_client = client
        logger.info("[REDIS] client initialized")
        return _redis_client


def set_redis_client(client: Optional[Redis]) -> None:
    """Replace the shared client (tests inject a fake here)."""
    global _redis_client

    with _redis_lock:
        _redis_client = client


def close_redis_client() -> None:
    global _redis_client

    with _redis_lock:
        if _redis_client is not None:
            _redis_client.close()
            _redis_client = None
            logger.info("[REDIS] client closed")
