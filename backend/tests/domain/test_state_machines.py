"""Transition tables for bookings, reports and withdrawals."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from carshare.core.enums import BookingStatus, ReportStatus, ReportType, WithdrawalStatus
from carshare.core.exceptions import InvalidStateTransitionException
from carshare.domain.state_machines import (
    BOOKING_STATE_MACHINE,
    REPORT_STATE_MACHINE,
    WITHDRAWAL_STATE_MACHINE,
    transition_booking,
    transition_report,
    transition_withdrawal,
)
from carshare.models.booking import Booking
from carshare.models.booking_report import BookingReport
from carshare.models.withdrawal import WithdrawalRequest

BOOKING_EDGES = {
    (BookingStatus.PENDING, BookingStatus.APPROVED),
    (BookingStatus.PENDING, BookingStatus.REJECTED),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.APPROVED, BookingStatus.IN_PROGRESS),
    (BookingStatus.APPROVED, BookingStatus.CANCELLED),
    (BookingStatus.APPROVED, BookingStatus.EXPIRED),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
}

REPORT_EDGES = {
    (ReportStatus.PENDING, ReportStatus.UNDER_REVIEW),
    (ReportStatus.PENDING, ReportStatus.RESOLVED),
    (ReportStatus.PENDING, ReportStatus.REJECTED),
    (ReportStatus.UNDER_REVIEW, ReportStatus.RESOLVED),
    (ReportStatus.UNDER_REVIEW, ReportStatus.REJECTED),
}

WITHDRAWAL_EDGES = {
    (WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED),
    (WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED),
    (WithdrawalStatus.APPROVED, WithdrawalStatus.PROCESSED),
    (WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED),
}


def _all_pairs(enum_cls):
    return [(a, b) for a in enum_cls for b in enum_cls]


@pytest.mark.parametrize("current,target", _all_pairs(BookingStatus))
def test_booking_table_matches_lifecycle(current, target):
    assert BOOKING_STATE_MACHINE.can_transition(current, target) == ((current, target) in BOOKING_EDGES)


@pytest.mark.parametrize("current,target", _all_pairs(ReportStatus))
def test_report_table_matches_lifecycle(current, target):
    assert REPORT_STATE_MACHINE.can_transition(current, target) == ((current, target) in REPORT_EDGES)


@pytest.mark.parametrize("current,target", _all_pairs(WithdrawalStatus))
def test_withdrawal_table_matches_lifecycle(current, target):
    assert WITHDRAWAL_STATE_MACHINE.can_transition(current, target) == (
        (current, target) in WITHDRAWAL_EDGES
    )


def test_terminal_booking_states():
    terminal = {s for s in BookingStatus if BOOKING_STATE_MACHINE.is_terminal(s)}
    assert terminal == {
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
        BookingStatus.EXPIRED,
        BookingStatus.COMPLETED,
    }


def test_new_entities_must_start_in_initial_state():
    assert BOOKING_STATE_MACHINE.can_transition(None, BookingStatus.PENDING)
    assert not BOOKING_STATE_MACHINE.can_transition(None, BookingStatus.APPROVED)


def _booking(**overrides) -> Booking:
    values = dict(
        id="01HZZZZZZZZZZZZZZZZZZZZZZZ",
        renter_id="renter",
        car_id="car",
        status=BookingStatus.PENDING,
        start_time=datetime(2030, 1, 1, 9, tzinfo=timezone.utc),
        end_time=datetime(2030, 1, 1, 19, tzinfo=timezone.utc),
        base_price=Decimal("1000"),
        platform_fee=Decimal("100"),
        total_amount=Decimal("1100"),
    )
    values.update(overrides)
    return Booking(**values)


class TestBookingStatusGuard:
    def test_transition_stamps_timestamp(self):
        booking = _booking()
        approved_at = datetime(2029, 12, 30, 12, tzinfo=timezone.utc)

        previous = transition_booking(booking, BookingStatus.APPROVED, now=approved_at)

        assert previous == BookingStatus.PENDING
        assert booking.status == BookingStatus.APPROVED
        assert booking.approved_at == approved_at

    def test_skipping_a_state_is_rejected(self):
        booking = _booking()
        with pytest.raises(InvalidStateTransitionException) as exc_info:
            transition_booking(booking, BookingStatus.COMPLETED)
        assert exc_info.value.details["current_status"] == "pending"
        assert exc_info.value.details["target_status"] == "completed"
        assert booking.status == BookingStatus.PENDING

    def test_direct_attribute_write_is_guarded(self):
        booking = _booking()
        with pytest.raises(InvalidStateTransitionException):
            booking.status = BookingStatus.IN_PROGRESS

    def test_cannot_construct_in_non_initial_state(self):
        with pytest.raises(InvalidStateTransitionException):
            _booking(status=BookingStatus.COMPLETED)

    def test_reversal_is_rejected(self):
        booking = _booking()
        transition_booking(booking, BookingStatus.APPROVED)
        transition_booking(booking, BookingStatus.IN_PROGRESS)
        with pytest.raises(InvalidStateTransitionException):
            transition_booking(booking, BookingStatus.APPROVED)

    def test_same_value_write_is_allowed(self):
        booking = _booking()
        booking.status = BookingStatus.PENDING
        assert booking.status == BookingStatus.PENDING


def test_report_and_withdrawal_guards():
    report = BookingReport(
        booking_id="b",
        reporter_id="u",
        title="Scratch",
        description="Rear bumper scratched",
        report_type=ReportType.DAMAGE,
        status=ReportStatus.PENDING,
    )
    transition_report(report, ReportStatus.UNDER_REVIEW)
    transition_report(report, ReportStatus.RESOLVED)
    with pytest.raises(InvalidStateTransitionException):
        transition_report(report, ReportStatus.UNDER_REVIEW)

    request = WithdrawalRequest(
        user_id="u", bank_account_id="a", amount=Decimal("500000"), status=WithdrawalStatus.PENDING
    )
    with pytest.raises(InvalidStateTransitionException):
        transition_withdrawal(request, WithdrawalStatus.PROCESSED)
    transition_withdrawal(request, WithdrawalStatus.APPROVED)
    transition_withdrawal(request, WithdrawalStatus.PROCESSED)
    assert request.status == WithdrawalStatus.PROCESSED
