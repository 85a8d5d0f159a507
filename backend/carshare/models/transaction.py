# backend/carshare/models/transaction.py
"""
Ledger transaction model.

A transaction moves ``amount`` from ``debit_account`` (of ``from_user_id``)
to ``credit_account`` (of ``to_user_id``). User buckets are ``available``
and ``locked``; ``external`` (gateway or bank) and ``platform`` have no
user row. Completed rows are immutable; corrections are new offsetting
transactions.
"""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, event, inspect
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.enums import LedgerAccount, TransactionStatus, TransactionType
from ..core.exceptions import BusinessRuleException
from ..database import Base
from .base_enum import create_safe_enum
from .types import Money, TimestampMixin

IMMUTABLE_COLUMNS = (
    "amount",
    "from_user_id",
    "to_user_id",
    "debit_account",
    "credit_account",
    "type",
    "booking_id",
)


class Transaction(TimestampMixin, Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        Index("ix_transactions_from_user", "from_user_id", "created_at"),
        Index("ix_transactions_to_user", "to_user_id", "created_at"),
        Index("ix_transactions_booking", "booking_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    from_user_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    to_user_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=True
    )
    bank_account_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bank_accounts.id"), nullable=True
    )
    type: Mapped[TransactionType] = mapped_column(
        create_safe_enum(TransactionType, "transaction_type"), nullable=False
    )
    status: Mapped[TransactionStatus] = mapped_column(
        create_safe_enum(TransactionStatus, "transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    debit_account: Mapped[LedgerAccount] = mapped_column(
        create_safe_enum(LedgerAccount, "debit_ledger_account"), nullable=False
    )
    credit_account: Mapped[LedgerAccount] = mapped_column(
        create_safe_enum(LedgerAccount, "credit_ledger_account"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proof_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def signed_amount_for(self, user_id: str, account: LedgerAccount) -> Decimal:
        """Effect of this transaction on one user bucket (+credit, -debit)."""

        delta = Decimal("0")
        if self.to_user_id == user_id and self.credit_account == account:
            delta += self.amount
        if self.from_user_id == user_id and self.debit_account == account:
            delta -= self.amount
        return delta

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.type} {self.amount} {self.debit_account}->{self.credit_account}>"


@event.listens_for(Transaction, "before_update")
def _reject_completed_mutation(mapper: Any, connection: Any, target: Transaction) -> None:
    state = inspect(target)
    status_history = state.attrs.status.history
    was_completed = (
        status_history.deleted and status_history.deleted[0] == TransactionStatus.COMPLETED
    ) or (not status_history.has_changes() and target.status == TransactionStatus.COMPLETED)
    if not was_completed:
        return
    for column in IMMUTABLE_COLUMNS:
        if state.attrs[column].history.has_changes():
            raise BusinessRuleException(
                "Completed transactions are immutable",
                code="TRANSACTION_IMMUTABLE",
                details={"transaction_id": target.id, "column": column},
            )
