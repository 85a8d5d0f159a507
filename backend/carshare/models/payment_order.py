"""Gateway payment orders (one per checkout link)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.enums import PaymentOrderStatus, PaymentPurpose
from ..database import Base
from .base_enum import create_safe_enum
from .types import Money, TimestampMixin, UTCDateTime


class PaymentOrder(TimestampMixin, Base):
    """
    A payable amount for a booking, identified at the gateway by ``order_code``.

    The order code is derived from (booking id, purpose, attempt), so the
    gateway webhook can always be traced back to exactly one row.
    """

    __tablename__ = "payment_orders"
    __table_args__ = (
        Index("ix_payment_orders_booking_purpose", "booking_id", "purpose"),
        Index("ix_payment_orders_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)
    order_code: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    purpose: Mapped[PaymentPurpose] = mapped_column(
        create_safe_enum(PaymentPurpose, "payment_purpose"), nullable=False
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[PaymentOrderStatus] = mapped_column(
        create_safe_enum(PaymentOrderStatus, "payment_order_status"),
        nullable=False,
        default=PaymentOrderStatus.PENDING,
    )
    payment_link_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gateway_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
