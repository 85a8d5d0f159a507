from __future__ import annotations

from contextlib import contextmanager
import logging
import time
from typing import Iterator, Optional

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .redis import get_redis_client

logger = logging.getLogger(__name__)

_NAMESPACE = "carshare"


def _lock_key(booking_id: str) -> str:
    return f"{_NAMESPACE}:lock:booking:{booking_id}:mutex"


def acquire_booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> bool:
    """Take the per-booking mutex; returns True when Redis is unavailable."""

    ttl = ttl_s or settings.booking_lock_ttl_seconds
    client = get_redis_client()
    if client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
        logger.warning(
            "booking_lock_sync_redis_unavailable",
            extra={"booking_id": booking_id},
        )
        return True
    try:
        acquired = bool(client.set(_lock_key(booking_id), str(time.time()), nx=True, ex=ttl))
    except Exception as exc:
        prometheus_metrics.record_booking_lock("acquire", "error")
        logger.warning(
            "booking_lock_sync_failed",
            extra={
                "booking_id": booking_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return True
    prometheus_metrics.record_booking_lock("acquire", "success" if acquired else "blocked")
    return acquired


def release_booking_lock_sync(booking_id: str) -> None:
    client = get_redis_client()
    if client is None:
        prometheus_metrics.record_booking_lock("release", "redis_unavailable")
        return
    try:
        deleted = client.delete(_lock_key(booking_id))
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_sync_release_failed",
            extra={
                "booking_id": booking_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return
    prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")


@contextmanager
def booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Hold the booking mutex for the duration of the block.

    Yields whether the lock was acquired; callers decide how to react to
    ``False`` (another worker is mutating the same booking).
    """

    acquired = acquire_booking_lock_sync(booking_id, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_booking_lock_sync(booking_id)
