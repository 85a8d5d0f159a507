"""
Inbound webhook ledger.

Every PayOS delivery is written here before the payment service applies it,
so a redelivered or failed notification can always be traced back to the
raw body the gateway sent. Rows are keyed by ``(source, event_id)``; for
PayOS the event id is ``"{orderCode}:{code}"``.
"""

from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import TYPE_CHECKING, Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent
from ..repositories.factory import RepositoryFactory
from .base import BaseService

if TYPE_CHECKING:
    from .payment_service import WebhookOutcome

PAYOS_SOURCE = "payos"
MAX_ERROR_LENGTH = 2000

_MASKED = "***"
_SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key", "x-client-id"})

# A payment the gateway reports as failed was still handled correctly.
_STATUS_BY_OUTCOME = {"failed": "payment_failed"}


def mask_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    return {
        name: _MASKED if name.lower() in _SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


class WebhookLedgerService(BaseService):
    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = RepositoryFactory.create_webhook_event_repository(db)

    @staticmethod
    def elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _lookup(
        self, source: str, event_id: str | None, idempotency_key: str | None
    ) -> WebhookEvent | None:
        if event_id:
            found = self.repository.find_by_source_and_event_id(source, event_id)
            if found is not None:
                return found
        if idempotency_key:
            return self.repository.find_by_source_and_idempotency_key(source, idempotency_key)
        return None

    def _bump_retry(
        self, event: WebhookEvent, headers: dict[str, Any] | None, now: datetime
    ) -> WebhookEvent:
        event.retry_count = (event.retry_count or 0) + 1
        event.last_retry_at = now
        if headers is not None:
            event.headers = headers
        self.repository.flush()
        self.logger.info(
            "Webhook redelivered",
            extra={"source": event.source, "event_id": event.event_id, "retry": event.retry_count},
        )
        return event

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        headers: Mapping[str, Any] | None = None,
        event_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> WebhookEvent:
        """
        Store a delivery as ``received``.

        A known ``(source, event_id)`` is not inserted twice: the existing
        row's retry counter moves instead. When two workers race on the
        insert, the loser falls back to that same path.
        """
        now = datetime.now(timezone.utc)
        safe_headers = mask_headers(headers) if headers else None

        existing = self._lookup(source, event_id, None)
        if existing is not None:
            return self._bump_retry(existing, safe_headers, now)

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                idempotency_key=idempotency_key,
                payload=payload,
                headers=safe_headers,
                status="received",
                received_at=now,
                retry_count=0,
            )
        except RepositoryException as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = self._lookup(source, event_id, idempotency_key)
            if existing is None:
                raise
            return self._bump_retry(existing, safe_headers, now)

    def record_delivery(
        self,
        *,
        event_id: str,
        paid: bool,
        payload: dict[str, Any],
        headers: Mapping[str, Any] | None = None,
    ) -> WebhookEvent:
        """Log a verified PayOS notification in its own transaction."""
        with self.transaction():
            return self.log_received(
                source=PAYOS_SOURCE,
                event_type="payment.paid" if paid else "payment.failed",
                payload=payload,
                headers=headers,
                event_id=event_id,
            )

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        duration_ms: int | None = None,
        status: str = "processed",
    ) -> WebhookEvent:
        event.status = status
        event.processing_error = None
        event.processed_at = datetime.now(timezone.utc)
        event.related_entity_type = related_entity_type
        event.related_entity_id = related_entity_id
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self,
        event: WebhookEvent,
        *,
        error: str,
        duration_ms: int | None = None,
        status: str = "failed",
    ) -> WebhookEvent:
        event.status = status
        event.processing_error = error[:MAX_ERROR_LENGTH]
        event.processed_at = datetime.now(timezone.utc)
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    def record_outcome(
        self, event: WebhookEvent, outcome: "WebhookOutcome", duration_ms: int
    ) -> WebhookEvent:
        """Close the event with the payment service's verdict."""
        with self.transaction():
            return self.mark_processed(
                event,
                related_entity_type="booking" if outcome.booking_id else None,
                related_entity_id=outcome.booking_id,
                duration_ms=duration_ms,
                status=_STATUS_BY_OUTCOME.get(outcome.outcome, outcome.outcome),
            )

    def record_failure(self, event: WebhookEvent, error: str, duration_ms: int) -> WebhookEvent:
        with self.transaction():
            return self.mark_failed(event, error=error, duration_ms=duration_ms)

    @BaseService.measure_operation("webhook_ledger.list_events")
    def list_events(
        self,
        *,
        source: str | None = None,
        status: str | None = None,
        since_hours: int = 24,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        return self.repository.list_events(
            source=source, status=status, since_hours=since_hours, limit=limit
        )
