from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from carshare.core.enums import BookingStatus, PaymentOrderStatus, PaymentPurpose, RoleName
from carshare.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ForbiddenException,
)
from carshare.integrations.payos_client import to_gateway_amount
from carshare.services.booking_service import BookingService
from carshare.services.extension_service import ExtensionService
from carshare.services.ledger_service import LedgerService


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
def extensions(db):
    return ExtensionService(db)


def _deliver(bookings, payos_fake, order, now):
    body = payos_fake.build_webhook(order.order_code, to_gateway_amount(order.amount))
    return bookings.payment_service.handle_payment_webhook(body, now=now)


@pytest.fixture
def ongoing(bookings, payos_fake, renter, owner, car, actor, window, now):
    start, end = window(1, 10)
    booking = bookings.create_booking(actor(renter), car.id, start, end, now=now)
    approval = bookings.approve_booking(actor(owner), booking.id, now=now)
    _deliver(bookings, payos_fake, approval.payment_order, now)
    bookings.start_booking(booking.id, actor(renter), now=start)
    assert booking.status == BookingStatus.IN_PROGRESS
    return booking


def test_paid_extension_moves_end_time_and_grows_escrow(
    db, bookings, extensions, payos_fake, ongoing, renter, actor
):
    original_end = ongoing.end_time
    requested_at = ongoing.start_time + timedelta(hours=2)

    quote = extensions.request_extension(
        actor(renter), ongoing.id, original_end + timedelta(hours=5), now=requested_at
    )
    assert quote.additional_amount == Decimal("500.00")
    assert quote.current_end_time == original_end
    assert ongoing.pending_extension_end_time == original_end + timedelta(hours=5)
    assert ongoing.end_time == original_end

    order = bookings.payment_service.issue_payment_link(ongoing.id, now=requested_at)
    assert order.purpose == PaymentPurpose.EXTENSION
    assert order.amount == Decimal("500.00")

    outcome = _deliver(bookings, payos_fake, order, requested_at)

    assert outcome.outcome == "processed"
    assert ongoing.end_time == original_end + timedelta(hours=5)
    assert ongoing.pending_extension_end_time is None
    assert ongoing.is_extension_paid
    assert ongoing.total_amount == Decimal("1600.00")
    assert LedgerService(db).escrow_amount(ongoing.id) == Decimal("1500.00")


def test_newer_request_supersedes_unpaid_one(bookings, extensions, payos_fake, ongoing, renter, actor):
    requested_at = ongoing.start_time + timedelta(hours=1)
    extensions.request_extension(
        actor(renter), ongoing.id, ongoing.end_time + timedelta(hours=2), now=requested_at
    )
    first = bookings.payment_service.issue_payment_link(ongoing.id, now=requested_at)

    quote = extensions.request_extension(
        actor(renter), ongoing.id, ongoing.end_time + timedelta(hours=4), now=requested_at
    )

    assert quote.additional_amount == Decimal("400.00")
    assert first.status == PaymentOrderStatus.CANCELLED

    stale = _deliver(bookings, payos_fake, first, requested_at)
    assert stale.outcome == "rejected"
    assert stale.reason == "order_cancelled"
    assert ongoing.pending_extension_end_time is not None
    assert not ongoing.is_extension_paid


def test_only_ongoing_trips_can_be_extended(
    bookings, extensions, renter, owner, car, actor, window, now
):
    start, end = window(2, 10)
    booking = bookings.create_booking(actor(renter), car.id, start, end, now=now)
    bookings.approve_booking(actor(owner), booking.id, now=now)

    with pytest.raises(BusinessRuleException) as exc_info:
        extensions.request_extension(actor(renter), booking.id, end + timedelta(hours=2), now=now)
    assert exc_info.value.code == "EXTENSION_NOT_ALLOWED"


def test_only_the_renter_can_extend(extensions, ongoing, owner, actor):
    with pytest.raises(ForbiddenException):
        extensions.request_extension(
            actor(owner), ongoing.id, ongoing.end_time + timedelta(hours=2)
        )


def test_extension_cannot_overlap_next_booking(
    extensions, ongoing, renter, car, make_user, make_booking, actor
):
    next_start = ongoing.end_time + timedelta(hours=3)
    make_booking(
        make_user(RoleName.DRIVER),
        car,
        next_start,
        next_start + timedelta(hours=5),
        status=BookingStatus.APPROVED,
    )

    with pytest.raises(BookingConflictException):
        extensions.request_extension(
            actor(renter), ongoing.id, ongoing.end_time + timedelta(hours=5)
        )
    assert ongoing.pending_extension_end_time is None

    quote = extensions.request_extension(
        actor(renter), ongoing.id, ongoing.end_time + timedelta(hours=3)
    )
    assert quote.additional_amount == Decimal("300.00")


def test_returning_the_car_drops_unpaid_extension(
    bookings, extensions, ongoing, renter, actor
):
    original_end = ongoing.end_time
    extensions.request_extension(
        actor(renter), ongoing.id, original_end + timedelta(hours=4), now=original_end
    )
    order = bookings.payment_service.issue_payment_link(ongoing.id, now=original_end)

    bookings.return_car(actor(renter), ongoing.id, now=original_end)

    assert ongoing.pending_extension_end_time is None
    assert ongoing.extension_amount == Decimal("0")
    assert ongoing.end_time == original_end
    assert ongoing.status == BookingStatus.COMPLETED
    assert order.status == PaymentOrderStatus.CANCELLED


def test_confirmation_loses_to_booking_that_took_the_slot(
    db, bookings, extensions, payos_fake, ongoing, renter, car, make_user, make_booking, actor
):
    original_end = ongoing.end_time
    requested_at = ongoing.start_time + timedelta(hours=2)
    extensions.request_extension(
        actor(renter), ongoing.id, original_end + timedelta(hours=5), now=requested_at
    )
    order = bookings.payment_service.issue_payment_link(ongoing.id, now=requested_at)

    competitor = make_booking(
        make_user(RoleName.DRIVER),
        car,
        original_end + timedelta(hours=2),
        original_end + timedelta(hours=6),
        status=BookingStatus.APPROVED,
    )

    outcome = _deliver(bookings, payos_fake, order, requested_at + timedelta(minutes=10))

    assert outcome.outcome == "rejected"
    assert outcome.reason == "extension_conflict"
    assert order.status == PaymentOrderStatus.REJECTED
    assert ongoing.end_time == original_end
    assert ongoing.pending_extension_end_time is None
    assert ongoing.extension_amount == Decimal("0")
    assert ongoing.total_amount == Decimal("1100.00")
    assert LedgerService(db).escrow_amount(ongoing.id) == Decimal("1000.00")
    assert competitor.status == BookingStatus.APPROVED


def test_confirmation_loses_to_dates_blocked_after_request(
    db, bookings, extensions, payos_fake, ongoing, renter, owner, car, actor
):
    original_end = ongoing.end_time
    requested_at = ongoing.start_time + timedelta(hours=2)
    extensions.request_extension(
        actor(renter), ongoing.id, original_end + timedelta(days=1), now=requested_at
    )
    order = bookings.payment_service.issue_payment_link(ongoing.id, now=requested_at)

    next_day = (original_end + timedelta(days=1)).date()
    bookings.availability_service.set_unavailability(actor(owner), car.id, [next_day])

    outcome = _deliver(bookings, payos_fake, order, requested_at)

    assert outcome.reason == "extension_conflict"
    assert ongoing.end_time == original_end


def test_confirmation_after_return_leaves_end_time(
    bookings, extensions, payos_fake, ongoing, renter, actor
):
    original_end = ongoing.end_time
    extensions.request_extension(
        actor(renter), ongoing.id, original_end + timedelta(hours=4), now=original_end
    )
    order = bookings.payment_service.issue_payment_link(ongoing.id, now=original_end)
    bookings.return_car(actor(renter), ongoing.id, now=original_end)

    outcome = _deliver(bookings, payos_fake, order, original_end + timedelta(minutes=5))

    assert outcome.outcome == "rejected"
    assert ongoing.end_time == original_end
    assert ongoing.status == BookingStatus.COMPLETED
    assert order.status != PaymentOrderStatus.PAID
