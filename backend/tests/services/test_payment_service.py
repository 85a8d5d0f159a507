"""Gateway confirmations: at-least-once delivery, out-of-order events, reconciliation."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from carshare.core.enums import BookingStatus, PaymentOrderStatus, PaymentPurpose, RoleName, TransactionType
from carshare.core.exceptions import BusinessRuleException, ValidationException
from carshare.integrations.payos_client import to_gateway_amount
from carshare.models.transaction import Transaction
from carshare.services.booking_service import BookingService
from carshare.services.payment_service import order_code_for


@pytest.fixture
def owner(make_user):
    return make_user(RoleName.OWNER)


@pytest.fixture
def renter(make_user):
    return make_user(RoleName.DRIVER)


@pytest.fixture
def car(make_car, owner):
    return make_car(owner, price_per_hour=Decimal("100"))


@pytest.fixture
def bookings(db):
    return BookingService(db)


@pytest.fixture
def payments(bookings):
    return bookings.payment_service


@pytest.fixture
def approved(bookings, renter, owner, car, actor, window, now):
    start, end = window(1, 10)
    booking = bookings.create_booking(actor(renter), car.id, start, end, now=now)
    result = bookings.approve_booking(actor(owner), booking.id, now=now)
    return result.booking, result.payment_order


def _webhook(payos_fake, order, **kwargs):
    return payos_fake.build_webhook(order.order_code, to_gateway_amount(order.amount), **kwargs)


def _payment_count(db, booking_id):
    return (
        db.query(Transaction)
        .filter(
            Transaction.booking_id == booking_id,
            Transaction.type == TransactionType.BOOKING_PAYMENT,
        )
        .count()
    )


def test_order_code_is_deterministic_and_fits_gateway_limit():
    first = order_code_for("01J0000000000000000000000A", PaymentPurpose.BOOKING, 1)
    assert first == order_code_for("01J0000000000000000000000A", PaymentPurpose.BOOKING, 1)
    assert first != order_code_for("01J0000000000000000000000A", PaymentPurpose.BOOKING, 2)
    assert first != order_code_for("01J0000000000000000000000A", PaymentPurpose.EXTENSION, 1)
    assert 0 <= first < 2**48


class TestIdempotency:
    def test_duplicate_delivery_moves_money_once(self, db, payments, payos_fake, approved, owner, now):
        booking, order = approved
        body = _webhook(payos_fake, order)

        first = payments.handle_payment_webhook(body, now=now)
        second = payments.handle_payment_webhook(body, now=now)

        assert first.outcome == "processed"
        assert second.outcome == "duplicate"
        assert _payment_count(db, booking.id) == 1
        assert owner.locked_balance == Decimal("1000.00")
        assert order.status == PaymentOrderStatus.PAID
        assert order.gateway_reference == f"FT{order.order_code}"

    def test_reissuing_link_reuses_open_order(self, payments, payos_fake, approved, now):
        booking, order = approved
        again = payments.issue_payment_link(booking.id, now=now)
        assert again.id == order.id
        assert [call for call in payos_fake.calls if call[0] == "create_link"] == [
            ("create_link", order.order_code)
        ]

    def test_expired_link_is_replaced(self, payments, approved, now):
        booking, order = approved
        later = now + timedelta(minutes=30)
        replacement = payments.issue_payment_link(booking.id, now=later)
        assert replacement.id != order.id
        assert replacement.attempt == 2
        assert order.status == PaymentOrderStatus.EXPIRED


class TestOutOfOrderDelivery:
    def test_failure_after_payment_is_ignored(self, db, payments, payos_fake, approved, now):
        booking, order = approved
        payments.handle_payment_webhook(_webhook(payos_fake, order), now=now)

        late_failure = payments.handle_payment_webhook(_webhook(payos_fake, order, code="01"), now=now)

        assert late_failure.outcome == "duplicate"
        assert booking.is_paid
        assert order.status == PaymentOrderStatus.PAID

    def test_failure_marks_pending_order_failed(self, payments, payos_fake, approved, now):
        booking, order = approved
        outcome = payments.handle_payment_webhook(_webhook(payos_fake, order, code="01"), now=now)
        assert outcome.outcome == "failed"
        assert order.status == PaymentOrderStatus.FAILED
        assert not booking.is_paid

    def test_payment_after_cancel_is_rejected(
        self, db, bookings, payments, payos_fake, approved, renter, actor, now
    ):
        booking, order = approved
        bookings.cancel_booking(actor(renter), booking.id, now=now)

        outcome = payments.handle_payment_webhook(_webhook(payos_fake, order), now=now)

        assert outcome.outcome == "rejected"
        assert outcome.reason == "order_cancelled"
        assert booking.status == BookingStatus.CANCELLED
        assert not booking.is_paid
        assert db.query(Transaction).count() == 0

    def test_payment_after_expiry_is_rejected(self, db, bookings, payments, payos_fake, approved):
        booking, order = approved
        bookings.expire_unpaid_bookings(now=booking.start_time + timedelta(minutes=1))

        outcome = payments.handle_payment_webhook(_webhook(payos_fake, order))

        assert outcome.outcome == "rejected"
        assert booking.status == BookingStatus.EXPIRED
        assert db.query(Transaction).count() == 0


class TestValidation:
    def test_amount_mismatch_is_rejected(self, db, payments, payos_fake, approved, now):
        booking, order = approved
        body = payos_fake.build_webhook(order.order_code, 1)
        outcome = payments.handle_payment_webhook(body, now=now)
        assert outcome.outcome == "rejected"
        assert outcome.reason == "amount_mismatch"
        assert order.status == PaymentOrderStatus.REJECTED
        assert not booking.is_paid

    def test_unknown_order_is_ignored(self, payments, payos_fake, now):
        outcome = payments.handle_payment_webhook(payos_fake.build_webhook(424242, 1000), now=now)
        assert outcome.outcome == "ignored"
        assert outcome.reason == "unknown_order"

    def test_tampered_body_fails_signature(self, payments, payos_fake, approved, now):
        _, order = approved
        body = _webhook(payos_fake, order)
        body["data"]["amount"] = 1
        with pytest.raises(ValidationException) as exc_info:
            payments.handle_payment_webhook(body, now=now)
        assert exc_info.value.code == "INVALID_SIGNATURE"

    def test_malformed_body(self, payments):
        with pytest.raises(ValidationException) as exc_info:
            payments.verify_webhook({"data": "nope"})
        assert exc_info.value.code == "INVALID_WEBHOOK"

    def test_nothing_due_for_pending_booking(self, bookings, payments, renter, car, actor, window, now):
        start, end = window(1, 10)
        booking = bookings.create_booking(actor(renter), car.id, start, end, now=now)
        with pytest.raises(BusinessRuleException) as exc_info:
            payments.issue_payment_link(booking.id, now=now)
        assert exc_info.value.code == "PAYMENT_NOT_DUE"


class TestReconciliation:
    def test_paid_at_gateway_is_confirmed(self, db, payments, payos_fake, approved, owner, now):
        booking, order = approved
        payos_fake.mark_paid(order.order_code)

        counts = payments.reconcile_pending_orders(now=now + timedelta(hours=1))

        assert counts["checked"] == 1
        assert counts["confirmed"] == 1
        assert booking.is_paid
        assert _payment_count(db, booking.id) == 1
        assert owner.locked_balance == Decimal("1000.00")

    def test_closed_at_gateway_is_closed_locally(self, payments, payos_fake, approved, now):
        _, order = approved
        payos_fake.mark_status(order.order_code, "CANCELLED")

        counts = payments.reconcile_pending_orders(now=now + timedelta(hours=1))

        assert counts["closed"] == 1
        assert order.status == PaymentOrderStatus.CANCELLED

    def test_gateway_errors_are_counted(self, payments, payos_fake, approved, now):
        _, order = approved
        payos_fake.fail_requests = True

        counts = payments.reconcile_pending_orders(now=now + timedelta(hours=1))

        assert counts["errors"] == 1
        assert order.status == PaymentOrderStatus.PENDING

    def test_webhook_then_reconcile_does_not_double_pay(self, db, payments, payos_fake, approved, now):
        booking, order = approved
        payments.handle_payment_webhook(_webhook(payos_fake, order), now=now)
        payos_fake.mark_paid(order.order_code)

        counts = payments.reconcile_pending_orders(now=now + timedelta(hours=1))

        assert counts["checked"] == 0
        assert _payment_count(db, booking.id) == 1
