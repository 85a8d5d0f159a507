from __future__ import annotations

from datetime import datetime, timedelta, timezone

from carshare.models.webhook_event import WebhookEvent
from carshare.services.payment_service import WebhookOutcome
from carshare.services.webhook_ledger_service import WebhookLedgerService


def test_log_received_creates_event(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        source="payos",
        event_type="payment",
        payload={"code": "00", "data": {"orderCode": 123}},
        headers={"Authorization": "secret", "X-Request-Id": "req"},
        event_id="123:00",
    )

    assert event.id is not None
    assert event.status == "received"
    assert event.headers.get("Authorization") == "***"
    assert event.headers.get("X-Request-Id") == "req"

    fetched = db.query(WebhookEvent).filter(WebhookEvent.id == event.id).first()
    assert fetched is not None
    assert fetched.event_id == "123:00"


def test_redelivery_bumps_retry_count(db):
    service = WebhookLedgerService(db)
    first = service.log_received(
        source="payos", event_type="payment", payload={"orderCode": 77}, event_id="77:00"
    )
    assert first.retry_count == 0
    assert first.last_retry_at is None

    second = service.log_received(
        source="payos", event_type="payment", payload={"orderCode": 77}, event_id="77:00"
    )

    assert second.id == first.id
    assert second.retry_count == 1
    assert second.last_retry_at is not None
    assert db.query(WebhookEvent).count() == 1


def test_same_event_id_from_another_source_is_separate(db):
    service = WebhookLedgerService(db)
    payos = service.log_received(source="payos", event_type="payment", payload={}, event_id="1")
    other = service.log_received(source="bank", event_type="transfer", payload={}, event_id="1")
    assert payos.id != other.id


def test_sensitive_headers_are_masked(db):
    event = WebhookLedgerService(db).log_received(
        source="payos",
        event_type="payment",
        payload={},
        headers={"Cookie": "sid=1", "x-api-key": "k", "X-Client-Id": "c", "User-Agent": "payos"},
    )
    assert event.headers == {
        "Cookie": "***",
        "x-api-key": "***",
        "X-Client-Id": "***",
        "User-Agent": "payos",
    }


def test_mark_processed_records_outcome(db):
    service = WebhookLedgerService(db)
    event = service.log_received(source="payos", event_type="payment", payload={})

    service.mark_processed(
        event,
        status="duplicate",
        related_entity_type="booking",
        related_entity_id="01J0000000000000000000000A",
        duration_ms=4,
    )

    assert event.status == "duplicate"
    assert event.processed_at is not None
    assert event.related_entity_type == "booking"
    assert event.processing_duration_ms == 4


def test_mark_failed_captures_error(db):
    service = WebhookLedgerService(db)
    event = service.log_received(source="payos", event_type="payment", payload={})

    service.mark_failed(event, error="database unavailable", duration_ms=12)

    assert event.status == "failed"
    assert event.processing_error == "database unavailable"


def test_list_events_filters_by_status_and_age(db):
    service = WebhookLedgerService(db)
    recent = service.log_received(source="payos", event_type="payment", payload={"n": 1})
    service.mark_failed(recent, error="boom")
    old = service.log_received(source="payos", event_type="payment", payload={"n": 2})
    old.received_at = datetime.now(timezone.utc) - timedelta(hours=30)
    service.mark_failed(old, error="old")
    service.log_received(source="payos", event_type="payment", payload={"n": 3})

    failed = service.list_events(source="payos", status="failed", since_hours=24)

    assert [e.id for e in failed] == [recent.id]


def test_record_delivery_and_gateway_failure_outcome(db):
    service = WebhookLedgerService(db)
    event = service.record_delivery(
        event_id="900:01", paid=False, payload={"code": "01"}, headers={"Authorization": "x"}
    )
    assert event.source == "payos"
    assert event.event_type == "payment.failed"

    service.record_outcome(event, WebhookOutcome("failed", 900, "01J0000000000000000000000B"), 3)

    stored = db.query(WebhookEvent).filter(WebhookEvent.id == event.id).one()
    assert stored.status == "payment_failed"
    assert stored.related_entity_id == "01J0000000000000000000000B"


def test_ignored_outcome_has_no_related_booking(db):
    service = WebhookLedgerService(db)
    event = service.record_delivery(event_id="901:00", paid=True, payload={})
    service.record_outcome(event, WebhookOutcome("ignored", 901, reason="unknown_order"), 1)
    assert event.event_type == "payment.paid"
    assert event.status == "ignored"
    assert event.related_entity_type is None
