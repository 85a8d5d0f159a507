"""Idempotency-Key response cache for mutating endpoints (Redis, fail-open)."""

import hashlib
import json
import logging
from typing import Any, Dict, Optional

from .config import settings
from .redis import get_redis_client

logger = logging.getLogger(__name__)


def idem_key(raw: str) -> str:
    digest = hashlib.sha256(raw.encode()).hexdigest()
    return f"carshare:idem:{digest}"


def build_raw_key(method: str, path: str, user_id: str, idempotency_key: str) -> str:
    return f"{method}:{path}:user:{user_id}:key:{idempotency_key}"


def get_cached(raw_key: str) -> Optional[Dict[str, Any]]:
    client = get_redis_client()
    if client is None:
        return None
    try:
        value = client.get(idem_key(raw_key))
    except Exception as exc:
        logger.warning("idempotency_cache_read_failed: %s", exc)
        return None
    if not value:
        return None
    try:
        decoded = json.loads(value)
    except ValueError:
        return None
    return decoded if isinstance(decoded, dict) else None


def set_cached(raw_key: str, payload: Dict[str, Any], ttl_s: Optional[int] = None) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(
            idem_key(raw_key),
            ttl_s or settings.idempotency_ttl_seconds,
            json.dumps(payload, default=str),
        )
    except Exception as exc:
        logger.warning("idempotency_cache_write_failed: %s", exc)
