# backend/carshare/models/withdrawal.py
"""Withdrawal request model."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates
import ulid

from ..core.enums import WithdrawalStatus
from ..database import Base
from ..domain.state_machines import WITHDRAWAL_STATE_MACHINE, guard_status_write
from .base_enum import create_safe_enum
from .types import Money, TimestampMixin, UTCDateTime


class WithdrawalRequest(TimestampMixin, Base):
    """
    User request to pay out part of their available balance.

    No ledger entry exists until the request is processed; open requests
    (pending or approved) count against the balance a new request may use.
    """

    __tablename__ = "withdrawal_requests"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount_positive"),
        Index("ix_withdrawal_requests_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    bank_account_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bank_accounts.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[WithdrawalStatus] = mapped_column(
        create_safe_enum(WithdrawalStatus, "withdrawal_status"),
        nullable=False,
        default=WithdrawalStatus.PENDING,
    )
    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("transactions.id"), nullable=True
    )

    @validates("status")
    def _validate_status(self, key: str, value: Any) -> WithdrawalStatus:
        return guard_status_write(WITHDRAWAL_STATE_MACHINE, self.status, value, entity_id=self.id)
