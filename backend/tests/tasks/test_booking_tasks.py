"""Celery sweeps run inline against the test session."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from carshare.core.enums import BookingStatus, CarStatus, ReportType, RoleName
from carshare.services.booking_service import OVERDUE_CANCELLATION_REASON
from carshare.services.report_service import COMPENSATION_BAN_REASON, ReportService
from carshare.tasks import booking_tasks
from carshare.tasks.beat_schedule import get_beat_schedule
from carshare.tasks.celery_app import celery_app


@pytest.fixture(autouse=True)
def task_session(db, monkeypatch):
    @contextmanager
    def _session():
        yield db
        db.commit()

    monkeypatch.setattr(booking_tasks, "get_db_session", _session)
    return db


@pytest.fixture
def clock():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def owner(make_user):
    return make_user(RoleName.OWNER)


@pytest.fixture
def renter(make_user):
    return make_user(RoleName.DRIVER)


@pytest.fixture
def car(make_car, owner):
    return make_car(owner, price_per_hour=Decimal("100"))


def test_beat_schedule_points_at_registered_tasks():
    for entry in get_beat_schedule().values():
        assert entry["task"] in celery_app.tasks
        assert entry["options"]["queue"] == "payments"


def test_expire_unpaid_bookings(car, renter, make_booking, clock):
    booking = make_booking(
        renter,
        car,
        clock - timedelta(hours=1),
        clock + timedelta(hours=5),
        status=BookingStatus.APPROVED,
    )

    result = booking_tasks.expire_unpaid_bookings()

    assert result["expired"] == 1
    assert "processed_at" in result
    assert booking.status == BookingStatus.EXPIRED


def test_start_due_bookings(car, renter, make_booking, clock):
    booking = make_booking(
        renter,
        car,
        clock - timedelta(minutes=10),
        clock + timedelta(hours=5),
        status=BookingStatus.APPROVED,
        is_paid=True,
    )

    assert booking_tasks.start_due_bookings()["started"] == 1
    assert booking.status == BookingStatus.IN_PROGRESS
    assert car.status == CarStatus.RENTED
    assert booking_tasks.start_due_bookings()["started"] == 0


def test_cancel_bookings_blocked_by_overdue(car, renter, make_user, make_booking, clock):
    make_booking(
        renter,
        car,
        clock - timedelta(hours=12),
        clock - timedelta(hours=2),
        status=BookingStatus.IN_PROGRESS,
        is_paid=True,
    )
    blocked = make_booking(
        make_user(RoleName.DRIVER),
        car,
        clock + timedelta(hours=1),
        clock + timedelta(hours=5),
        status=BookingStatus.APPROVED,
    )
    later = make_booking(
        make_user(RoleName.DRIVER),
        car,
        clock + timedelta(days=2),
        clock + timedelta(days=2, hours=5),
        status=BookingStatus.APPROVED,
    )

    assert booking_tasks.cancel_bookings_blocked_by_overdue()["cancelled"] == 1
    assert blocked.status == BookingStatus.CANCELLED
    assert blocked.cancellation_reason == OVERDUE_CANCELLATION_REASON
    assert blocked.cancelled_by_id is None
    assert later.status == BookingStatus.APPROVED


def test_reconcile_pending_payment_orders_reports_counts():
    result = booking_tasks.reconcile_pending_payment_orders()
    assert result["checked"] == 0
    assert set(result) >= {"checked", "confirmed", "closed", "unchanged", "errors"}


def test_enforce_compensation_deadlines(db, car, renter, owner, make_user, make_booking, actor, clock):
    booking = make_booking(
        renter,
        car,
        clock - timedelta(days=20),
        clock - timedelta(days=19),
        status=BookingStatus.COMPLETED,
    )
    reports = ReportService(db)
    report = reports.create_report(actor(owner), booking.id, "Dent", "Door dent", ReportType.DAMAGE)
    reports.assign_compensation(
        actor(make_user(RoleName.ADMIN)),
        report.id,
        renter.id,
        Decimal("300"),
        now=clock - timedelta(days=10),
    )

    assert booking_tasks.enforce_compensation_deadlines()["banned"] == 1
    assert renter.is_banned
    assert renter.banned_reason == COMPENSATION_BAN_REASON
