"""Availability ledger: the read path and the booking write path must agree."""

from __future__ import annotations

from datetime import timedelta

import pytest

from carshare.core.enums import BookingStatus, CarStatus, RoleName
from carshare.core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    UnavailableDateConflictException,
    ValidationException,
)
from carshare.models.car import CarAvailability
from carshare.services.availability_service import AvailabilityService, dates_touched
from carshare.services.booking_service import BookingService


@pytest.fixture
def owner(make_user):
    return make_user(RoleName.OWNER)


@pytest.fixture
def renter(make_user):
    return make_user(RoleName.DRIVER)


@pytest.fixture
def car(make_car, owner):
    return make_car(owner)


def test_dates_touched_is_half_open(window):
    start, _ = window(1, 10)
    midnight = start.replace(hour=0) + timedelta(days=1)
    assert dates_touched(start, midnight) == [start.date()]
    assert dates_touched(start, midnight + timedelta(minutes=1)) == [
        start.date(),
        midnight.date(),
    ]


def test_free_window_is_available(db, car, window):
    start, end = window(1, 10)
    verdict = AvailabilityService(db).check_window(car.id, start, end)
    assert verdict.available
    assert verdict.reason is None


@pytest.mark.parametrize("status", [CarStatus.PENDING, CarStatus.INACTIVE, CarStatus.REJECTED])
def test_unlisted_car_is_unavailable(db, make_car, owner, window, status):
    car = make_car(owner, status=status)
    start, end = window(1, 10)
    verdict = AvailabilityService(db).check_window(car.id, start, end)
    assert not verdict.available
    assert verdict.reason == "car_status"


def test_approved_booking_blocks_overlap_but_not_adjacent(
    db, car, renter, make_booking, window
):
    start, end = window(1, 10)
    booking = make_booking(renter, car, start, end, status=BookingStatus.APPROVED)
    service = AvailabilityService(db)

    overlap = service.check_window(car.id, end - timedelta(hours=1), end + timedelta(hours=2))
    assert not overlap.available
    assert overlap.reason == "booking_overlap"
    assert overlap.conflicting_booking_ids == (booking.id,)

    assert service.check_window(car.id, end, end + timedelta(hours=2)).available
    assert service.check_window(car.id, start - timedelta(hours=2), start).available


def test_pending_and_cancelled_bookings_do_not_block(db, car, renter, make_booking, window):
    start, end = window(1, 10)
    make_booking(renter, car, start, end, status=BookingStatus.PENDING)
    make_booking(renter, car, start, end, status=BookingStatus.CANCELLED)
    assert AvailabilityService(db).is_available(car.id, start, end)


def test_reversed_window_is_a_validation_error(db, car, window):
    start, end = window(1, 10)
    with pytest.raises(ValidationException):
        AvailabilityService(db).check_window(car.id, end, start)


class TestSetUnavailability:
    def test_blocks_dates_and_lists_them(self, db, car, owner, actor, window):
        start, _ = window(3, 1)
        service = AvailabilityService(db)

        rows = service.set_unavailability(actor(owner), car.id, [start.date()])

        assert [r.date for r in rows] == [start.date()]
        assert not service.is_available(car.id, start, start + timedelta(hours=2))
        assert service.list_unavailable_dates(
            car.id, start.date() - timedelta(days=1), start.date() + timedelta(days=1)
        ) == [start.date()]

    def test_reopening_a_date_upserts_the_override(self, db, car, owner, actor, window):
        start, _ = window(3, 1)
        service = AvailabilityService(db)
        service.set_unavailability(actor(owner), car.id, [start.date()])
        service.set_unavailability(actor(owner), car.id, [start.date()], is_available=True)

        rows = db.query(CarAvailability).filter_by(car_id=car.id).all()
        assert len(rows) == 1
        assert rows[0].is_available is True
        assert service.is_available(car.id, start, start + timedelta(hours=2))

    def test_date_with_approved_booking_conflicts_and_writes_nothing(
        self, db, car, owner, renter, actor, make_booking, window
    ):
        start, end = window(2, 10)
        free_day = start.date() - timedelta(days=1)
        make_booking(renter, car, start, end, status=BookingStatus.APPROVED)

        with pytest.raises(UnavailableDateConflictException) as exc_info:
            AvailabilityService(db).set_unavailability(
                actor(owner), car.id, [free_day, start.date()]
            )

        assert exc_info.value.details["date"] == start.date().isoformat()
        assert exc_info.value.code == "AVAILABILITY_CONFLICT"
        assert db.query(CarAvailability).count() == 0

    def test_only_the_owner_may_change_availability(self, db, car, renter, actor, window):
        start, _ = window(2, 1)
        with pytest.raises(ForbiddenException):
            AvailabilityService(db).set_unavailability(actor(renter), car.id, [start.date()])

    def test_booked_dates_are_listed(self, db, car, renter, make_booking, window):
        start, end = window(2, 30)
        make_booking(renter, car, start, end, status=BookingStatus.APPROVED)
        listed = AvailabilityService(db).list_unavailable_dates(
            car.id, start.date(), start.date() + timedelta(days=5)
        )
        assert listed == [start.date(), start.date() + timedelta(days=1)]


def test_read_and_write_paths_agree(
    db, car, owner, renter, make_user, make_car, actor, make_booking, window, now
):
    """Whatever check_window says, create_booking must do the same."""
    start, end = window(1, 10)
    make_booking(renter, car, start, end, status=BookingStatus.APPROVED)
    blocked_day, _ = window(4, 1)
    AvailabilityService(db).set_unavailability(actor(owner), car.id, [blocked_day.date()])

    other = make_user(RoleName.DRIVER)
    candidates = [
        window(1, 4),
        window(1, 4, start_hour=19),
        window(2, 10),
        window(3, 30),
        window(4, 2),
        window(5, 5),
    ]
    service = AvailabilityService(db)
    bookings = BookingService(db)
    for cand_start, cand_end in candidates:
        available = service.is_available(car.id, cand_start, cand_end)
        if available:
            booking = bookings.create_booking(
                actor(other), car.id, cand_start, cand_end, now=now
            )
            assert booking.status == BookingStatus.PENDING
        else:
            with pytest.raises(BookingConflictException):
                bookings.create_booking(actor(other), car.id, cand_start, cand_end, now=now)

    rented = make_car(owner, status=CarStatus.RENTED)
    cand_start, cand_end = window(5, 5)
    assert not service.is_available(rented.id, cand_start, cand_end)
    with pytest.raises(BookingConflictException) as exc_info:
        bookings.create_booking(actor(other), rented.id, cand_start, cand_end, now=now)
    assert exc_info.value.details["reason"] == "car_status"
