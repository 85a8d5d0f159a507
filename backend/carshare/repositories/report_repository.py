"""Booking report repository."""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import ReportStatus
from ..models.booking_report import BookingReport
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ReportRepository(BaseRepository[BookingReport]):
    def __init__(self, db: Session):
        super().__init__(db, BookingReport)

    def lock(self, report_id: str) -> Optional[BookingReport]:
        return self.get_by_id(report_id, for_update=True)

    def list_for_booking(self, booking_id: str) -> List[BookingReport]:
        query = self._build_query().filter(BookingReport.booking_id == booking_id)
        return self._execute_query(query.order_by(BookingReport.created_at))

    def find_unpaid_assigned_for_user(self, user_id: str) -> List[BookingReport]:
        """Open reports with compensation assigned to ``user_id`` and not yet paid."""
        query = self._build_query().filter(
            BookingReport.at_fault_user_id == user_id,
            BookingReport.status == ReportStatus.UNDER_REVIEW,
            BookingReport.is_compensation_paid.is_(False),
        )
        return self._execute_query(query)

    def find_overdue_compensation(self, now: datetime) -> List[BookingReport]:
        query = self._build_query().filter(
            BookingReport.status == ReportStatus.UNDER_REVIEW,
            BookingReport.is_compensation_paid.is_(False),
            BookingReport.compensation_due_date.is_not(None),
            BookingReport.compensation_due_date < now,
        )
        return self._execute_query(query.order_by(BookingReport.compensation_due_date))
