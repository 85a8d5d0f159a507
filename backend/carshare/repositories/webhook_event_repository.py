"""Repository helpers for webhook event ledger."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        query = self._build_query().filter(
            WebhookEvent.source == source, WebhookEvent.event_id == event_id
        )
        return query.first()

    def find_by_source_and_idempotency_key(
        self, source: str, idempotency_key: str
    ) -> WebhookEvent | None:
        query = self._build_query().filter(
            WebhookEvent.source == source,
            WebhookEvent.idempotency_key == idempotency_key,
        )
        return query.order_by(WebhookEvent.received_at.desc()).first()

    def list_events(
        self,
        *,
        source: str | None = None,
        status: str | None = None,
        since_hours: int = 24,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=since_hours)
        query = self._build_query().filter(WebhookEvent.received_at >= cutoff)
        if source:
            query = query.filter(WebhookEvent.source == source)
        if status:
            query = query.filter(WebhookEvent.status == status)
        query = query.order_by(WebhookEvent.received_at.desc()).limit(limit)
        return self._execute_query(query)
