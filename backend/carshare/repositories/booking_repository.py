# backend/carshare/repositories/booking_repository.py
"""
Booking Repository

All booking queries live here, including the overlap predicate used by the
availability check and the candidate queries used by the background sweeps.
Soft-deleted bookings are excluded unless a caller asks for them.
"""

from datetime import datetime
import logging
from typing import List, Optional, Sequence

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..core.enums import BLOCKING_BOOKING_STATUSES, BookingStatus
from ..models.booking import Booking, BookingLockedBalance
from ..models.car import Car
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for Booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def lock(self, booking_id: str, *, include_deleted: bool = False) -> Optional[Booking]:
        """Row-lock a booking; the webhook and cancellation serialise here."""
        return self.get_by_id(booking_id, include_deleted=include_deleted, for_update=True)

    def find_overlapping(
        self,
        car_id: str,
        start: datetime,
        end: datetime,
        *,
        statuses: Sequence[BookingStatus] = BLOCKING_BOOKING_STATUSES,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """Bookings of ``car_id`` in ``statuses`` whose window intersects ``[start, end)``."""
        query = self._build_query().filter(
            Booking.car_id == car_id,
            Booking.status.in_(list(statuses)),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return self._execute_query(query.order_by(Booking.start_time))

    def list_for_renter(self, renter_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        query = self._build_query().filter(Booking.renter_id == renter_id)
        if status is not None:
            query = query.filter(Booking.status == status)
        return self._execute_query(query.order_by(Booking.start_time.desc()))

    def list_for_owner(self, owner_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        query = (
            self._build_query()
            .join(Car, and_(Car.id == Booking.car_id))
            .filter(Car.owner_id == owner_id)
        )
        if status is not None:
            query = query.filter(Booking.status == status)
        return self._execute_query(query.order_by(Booking.start_time.desc()))

    def list_all(self, status: Optional[BookingStatus] = None, limit: int = 200) -> List[Booking]:
        query = self._build_query()
        if status is not None:
            query = query.filter(Booking.status == status)
        return self._execute_query(query.order_by(Booking.start_time.desc()).limit(limit))

    # Sweep candidates. Callers re-check each row under its lock.

    def find_unpaid_started(self, now: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.APPROVED,
            Booking.is_paid.is_(False),
            Booking.start_time <= now,
        )
        return self._execute_query(query.order_by(Booking.start_time))

    def find_paid_due_to_start(self, now: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.APPROVED,
            Booking.is_paid.is_(True),
            Booking.start_time <= now,
        )
        return self._execute_query(query.order_by(Booking.start_time))

    def find_overdue_in_progress(self, now: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.IN_PROGRESS,
            Booking.is_car_returned.is_(False),
            Booking.end_time < now,
        )
        return self._execute_query(query.order_by(Booking.end_time))

    def find_approved_starting_between(
        self, car_id: str, start: datetime, end: datetime
    ) -> List[Booking]:
        query = self._build_query().filter(
            Booking.car_id == car_id,
            Booking.status == BookingStatus.APPROVED,
            Booking.start_time >= start,
            Booking.start_time <= end,
        )
        return self._execute_query(query.order_by(Booking.start_time))

    def find_active_for_car(self, car_id: str) -> List[Booking]:
        query = self._build_query().filter(
            Booking.car_id == car_id,
            Booking.status == BookingStatus.IN_PROGRESS,
        )
        return self._execute_query(query)


class LockedBalanceRepository(BaseRepository[BookingLockedBalance]):
    """Escrow rows, one per paid booking."""

    def __init__(self, db: Session):
        super().__init__(db, BookingLockedBalance)

    def get_for_booking(
        self, booking_id: str, *, for_update: bool = False
    ) -> Optional[BookingLockedBalance]:
        query = self._build_query().filter(BookingLockedBalance.booking_id == booking_id)
        if for_update:
            query = self._lock(query)
        return query.first()
