from __future__ import annotations

from decimal import Decimal

import pytest

from carshare.core.enums import RoleName
from carshare.core.exceptions import ServiceException, ValidationException
from carshare.integrations.payos_client import to_gateway_amount
from carshare.models.webhook_event import WebhookEvent
from carshare.services.booking_service import BookingService
from carshare.services.payment_service import PaymentService

WEBHOOK = "/api/v1/payments/payos/webhook"


@pytest.fixture
def order(db, make_user, make_car, actor, window, now):
    owner = make_user(RoleName.OWNER)
    renter = make_user(RoleName.DRIVER)
    car = make_car(owner, price_per_hour=Decimal("100"))
    start, end = window(1, 10)
    service = BookingService(db)
    booking = service.create_booking(actor(renter), car.id, start, end, now=now)
    return service.approve_booking(actor(owner), booking.id).payment_order


def _body(payos_fake, order, **kwargs):
    return payos_fake.build_webhook(order.order_code, to_gateway_amount(order.amount), **kwargs)


def test_invalid_json_is_400(client):
    response = client.post(
        WEBHOOK, content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_WEBHOOK"


def test_missing_signature_is_400(client):
    response = client.post(WEBHOOK, json={"code": "00", "data": {"orderCode": 1}})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_WEBHOOK"


def test_bad_signature_is_400_and_not_recorded(client, db, payos_fake, order):
    body = _body(payos_fake, order)
    body["signature"] = "0" * 64
    response = client.post(WEBHOOK, json=body)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIGNATURE"
    assert db.query(WebhookEvent).count() == 0


def test_processed_then_duplicate(client, db, payos_fake, order):
    body = _body(payos_fake, order)

    first = client.post(WEBHOOK, json=body, headers={"x-api-key": "leaked"})
    second = client.post(WEBHOOK, json=body)

    assert first.status_code == 200
    assert first.json()["outcome"] == "processed"
    assert first.json()["booking_id"] == order.booking_id
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"

    events = db.query(WebhookEvent).all()
    assert len(events) == 1
    assert events[0].source == "payos"
    assert events[0].event_id == f"{order.order_code}:00"
    assert events[0].retry_count == 1
    assert events[0].status == "duplicate"
    assert events[0].related_entity_id == order.booking_id


def test_gateway_reported_failure_is_acknowledged(client, db, payos_fake, order):
    response = client.post(WEBHOOK, json=_body(payos_fake, order, code="01"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "failed"
    event = db.query(WebhookEvent).one()
    assert event.status == "payment_failed"
    assert event.event_type == "payment.failed"


def test_unknown_order_is_acknowledged(client, payos_fake):
    response = client.post(WEBHOOK, json=payos_fake.build_webhook(987654321, 1000))
    assert response.status_code == 200
    assert response.json() == {
        "outcome": "ignored",
        "order_code": 987654321,
        "booking_id": None,
        "reason": "unknown_order",
    }


def test_transient_error_asks_for_retry(client, db, payos_fake, order, monkeypatch):
    def boom(self, payload, *, now=None):
        raise ServiceException("database unavailable", code="DB_DOWN")

    monkeypatch.setattr(PaymentService, "handle_payment_webhook", boom)

    response = client.post(WEBHOOK, json=_body(payos_fake, order))

    assert response.status_code == 503
    assert response.json()["outcome"] == "retry"
    event = db.query(WebhookEvent).one()
    assert event.status == "failed"
    assert event.processing_error == "database unavailable"


def test_permanent_error_is_acknowledged(client, db, payos_fake, order, monkeypatch):
    def reject(self, payload, *, now=None):
        raise ValidationException("Webhook orderCode is not an integer", code="INVALID_WEBHOOK")

    monkeypatch.setattr(PaymentService, "handle_payment_webhook", reject)

    response = client.post(WEBHOOK, json=_body(payos_fake, order))

    assert response.status_code == 200
    assert response.json()["outcome"] == "failed"
    assert response.json()["reason"] == "INVALID_WEBHOOK"
