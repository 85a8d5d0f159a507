# backend/carshare/services/availability_service.py
"""
Availability Service

Answers "can this car be booked for [start, end)?" and manages the owner's
per-date overrides. The same ``check_window`` predicate backs the public
availability query, booking creation, approval and extension, so the read
and write paths can never disagree. Availability is always read from the
database in the current transaction; nothing here is cached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.authorization import ensure_car_owner
from ..core.enums import CarStatus
from ..core.exceptions import NotFoundException, UnavailableDateConflictException, ValidationException
from ..core.principal import CurrentUser
from ..models.car import Car, CarAvailability
from ..repositories.factory import RepositoryFactory
from .base import BaseService

if TYPE_CHECKING:
    from ..repositories.availability_repository import AvailabilityRepository
    from ..repositories.booking_repository import BookingRepository
    from ..repositories.car_repository import CarRepository

logger = logging.getLogger(__name__)

DEFAULT_UNAVAILABLE_LOOKAHEAD_DAYS = 90


def dates_touched(start: datetime, end: datetime) -> List[date]:
    """UTC calendar dates intersected by ``[start, end)``."""
    first = start.astimezone(timezone.utc).date()
    last = (end.astimezone(timezone.utc) - timedelta(microseconds=1)).date()
    days = (last - first).days
    return [first + timedelta(days=offset) for offset in range(max(days, 0) + 1)]


def day_window(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


@dataclass(frozen=True)
class AvailabilityVerdict:
    """Outcome of an availability check; ``reason`` is None when available."""

    car_id: str
    available: bool
    reason: Optional[str] = None
    blocked_dates: Tuple[date, ...] = field(default_factory=tuple)
    conflicting_booking_ids: Tuple[str, ...] = field(default_factory=tuple)

    def as_details(self) -> dict:
        return {
            "car_id": self.car_id,
            "reason": self.reason,
            "blocked_dates": [d.isoformat() for d in self.blocked_dates],
            "conflicting_booking_ids": list(self.conflicting_booking_ids),
        }


class AvailabilityService(BaseService):
    """Availability ledger for cars."""

    def __init__(
        self,
        db: Session,
        car_repository: Optional["CarRepository"] = None,
        availability_repository: Optional["AvailabilityRepository"] = None,
        booking_repository: Optional["BookingRepository"] = None,
    ):
        super().__init__(db)
        self.car_repository = car_repository or RepositoryFactory.create_car_repository(db)
        self.availability_repository = (
            availability_repository or RepositoryFactory.create_availability_repository(db)
        )
        self.booking_repository = booking_repository or RepositoryFactory.create_booking_repository(
            db
        )

    def _get_car(self, car_id: str) -> Car:
        car = self.car_repository.get_by_id(car_id)
        if car is None:
            raise NotFoundException(
                "Car not found", code="CAR_NOT_FOUND", details={"car_id": car_id}
            )
        return car

    def check_window(
        self,
        car_id: str,
        start: datetime,
        end: datetime,
        *,
        car: Optional[Car] = None,
        exclude_booking_id: Optional[str] = None,
        ignore_car_status: bool = False,
    ) -> AvailabilityVerdict:
        """
        Evaluate the window against car status, date overrides and bookings.

        ``ignore_car_status`` is used by extensions: the car is ``rented``
        by the very booking being extended.
        """
        if end <= start:
            raise ValidationException(
                "End time must be after start time",
                code="INVALID_BOOKING_WINDOW",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )
        car = car or self._get_car(car_id)

        if not ignore_car_status and car.status != CarStatus.AVAILABLE:
            return AvailabilityVerdict(car_id=car_id, available=False, reason="car_status")

        overrides = self.availability_repository.get_for_dates(car_id, dates_touched(start, end))
        blocked = tuple(sorted(day for day, row in overrides.items() if not row.is_available))
        if blocked:
            return AvailabilityVerdict(
                car_id=car_id, available=False, reason="blocked_dates", blocked_dates=blocked
            )

        overlapping = self.booking_repository.find_overlapping(
            car_id, start, end, exclude_booking_id=exclude_booking_id
        )
        if overlapping:
            return AvailabilityVerdict(
                car_id=car_id,
                available=False,
                reason="booking_overlap",
                conflicting_booking_ids=tuple(b.id for b in overlapping),
            )

        return AvailabilityVerdict(car_id=car_id, available=True)

    @BaseService.measure_operation("is_available")
    def is_available(self, car_id: str, start: datetime, end: datetime) -> bool:
        return self.check_window(car_id, start, end).available

    @BaseService.measure_operation("set_unavailability")
    def set_unavailability(
        self,
        actor: CurrentUser,
        car_id: str,
        dates: Iterable[date],
        is_available: bool = False,
    ) -> List[CarAvailability]:
        """
        Upsert one override per date for the owner's car.

        When blocking dates, every date is checked before anything is
        written; the first date covered by an approved or in-progress
        booking aborts the whole call.
        """
        requested = sorted(set(dates))
        if not requested:
            raise ValidationException("At least one date is required", code="NO_DATES")

        with self.transaction():
            car = self.car_repository.lock(car_id)
            if car is None:
                raise NotFoundException(
                    "Car not found", code="CAR_NOT_FOUND", details={"car_id": car_id}
                )
            ensure_car_owner(actor, car, action="change availability of this car")

            if not is_available:
                for day in requested:
                    start, end = day_window(day)
                    active = self.booking_repository.find_overlapping(car_id, start, end)
                    if active:
                        raise UnavailableDateConflictException(day, active[0].id)

            rows = [
                self.availability_repository.upsert(car_id, day, is_available) for day in requested
            ]

        self.log_operation(
            "set_unavailability",
            car_id=car_id,
            dates=[d.isoformat() for d in requested],
            is_available=is_available,
        )
        return rows

    @BaseService.measure_operation("list_unavailable_dates")
    def list_unavailable_dates(
        self,
        car_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> List[date]:
        """Override-blocked dates plus dates covered by approved/in-progress bookings."""
        self._get_car(car_id)
        from_date = from_date or datetime.now(timezone.utc).date()
        to_date = to_date or from_date + timedelta(days=DEFAULT_UNAVAILABLE_LOOKAHEAD_DAYS)
        if to_date < from_date:
            raise ValidationException(
                "to_date must not be before from_date",
                code="INVALID_DATE_RANGE",
                details={"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
            )

        blocked = set(self.availability_repository.get_unavailable_dates(car_id, from_date, to_date))
        range_start, _ = day_window(from_date)
        _, range_end = day_window(to_date)
        for booking in self.booking_repository.find_overlapping(car_id, range_start, range_end):
            for day in dates_touched(booking.start_time, booking.end_time):
                if from_date <= day <= to_date:
                    blocked.add(day)
        return sorted(blocked)
