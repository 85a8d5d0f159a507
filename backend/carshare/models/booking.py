# backend/carshare/models/booking.py
"""
Booking and escrow models.

A booking stores its priced snapshot (base price, platform fee, total)
so later car price changes never alter what the renter agreed to pay.
Status writes are checked against ``BOOKING_STATE_MACHINE``; assigning a
status that is not a legal edge raises before anything is flushed.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates
import ulid

from ..core.enums import BookingStatus
from ..database import Base
from ..domain.state_machines import BOOKING_STATE_MACHINE, guard_status_write
from .base_enum import create_safe_enum
from .types import Money, SoftDeleteMixin, TimestampMixin, UTCDateTime


class Booking(TimestampMixin, SoftDeleteMixin, Base):
    """
    Rental of one car by one renter for the window ``[start_time, end_time)``.

    ``total_amount`` = base price + platform fee + excess fee, plus the
    extension amount once that extension is paid.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_window_order"),
        Index("ix_bookings_car_status_window", "car_id", "status", "start_time", "end_time"),
        Index("ix_bookings_renter_status", "renter_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    renter_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    car_id: Mapped[str] = mapped_column(String(26), ForeignKey("cars.id"), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        create_safe_enum(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )

    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actual_return_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Priced snapshot
    base_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    excess_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    excess_day_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_car_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_excess_fee_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_order_code: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Extension (end_time moves only once the extension is paid)
    extension_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    pending_extension_end_time: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    is_extension_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Refund
    refund_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    refund_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    is_refund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Lifecycle
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @validates("status")
    def _validate_status(self, key: str, value: Any) -> BookingStatus:
        return guard_status_write(
            BOOKING_STATE_MACHINE, self.status, value, entity_id=self.id
        )

    @property
    def awaiting_excess_payment(self) -> bool:
        return self.excess_day_fee > 0 and not self.is_excess_fee_paid

    def __repr__(self) -> str:
        return f"<Booking {self.id} car={self.car_id} status={self.status}>"


class BookingLockedBalance(TimestampMixin, Base):
    """Escrow earmarked for the car owner until the booking settles."""

    __tablename__ = "booking_locked_balances"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_booking_locked_balances_amount_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=False, unique=True
    )
    owner_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
