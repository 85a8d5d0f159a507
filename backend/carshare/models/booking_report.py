# backend/carshare/models/booking_report.py
"""
Booking report (dispute) model.

Compensation is carried on the report itself: staff assign it to the
at-fault party, and resolving the report records exactly one
``compensation_payout`` transaction whose id is stored here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates
import ulid

from ..core.enums import ReportStatus, ReportType
from ..database import Base
from ..domain.state_machines import REPORT_STATE_MACHINE, guard_status_write
from .base_enum import create_safe_enum
from .types import Money, TimestampMixin, UTCDateTime

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 1000


class BookingReport(TimestampMixin, Base):
    __tablename__ = "booking_reports"
    __table_args__ = (
        CheckConstraint(
            "compensation_amount IS NULL OR compensation_amount > 0",
            name="ck_booking_reports_compensation_positive",
        ),
        Index("ix_booking_reports_booking", "booking_id"),
        Index("ix_booking_reports_status_due", "status", "compensation_due_date"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)
    reporter_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[str] = mapped_column(String(DESCRIPTION_MAX_LENGTH), nullable=False)
    report_type: Mapped[ReportType] = mapped_column(
        create_safe_enum(ReportType, "report_type"), nullable=False
    )
    status: Mapped[ReportStatus] = mapped_column(
        create_safe_enum(ReportStatus, "report_status"),
        nullable=False,
        default=ReportStatus.PENDING,
    )

    # Compensation
    at_fault_user_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    claimant_user_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    compensation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    compensation_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    compensation_due_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    is_compensation_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    compensation_paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    compensation_proof_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    compensation_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("transactions.id"), nullable=True
    )

    # Resolution
    resolution_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    @validates("status")
    def _validate_status(self, key: str, value: Any) -> ReportStatus:
        return guard_status_write(REPORT_STATE_MACHINE, self.status, value, entity_id=self.id)

    @property
    def has_assigned_compensation(self) -> bool:
        return self.at_fault_user_id is not None and self.compensation_amount is not None
