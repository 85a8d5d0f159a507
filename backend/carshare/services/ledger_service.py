# backend/carshare/services/ledger_service.py
"""
Ledger / Balance Engine

Every balance change goes through ``apply_transaction``: lock the involved
user rows in id order, check the debit, mutate the buckets, then append one
completed Transaction with a balance-after snapshot. The ledger never
commits; callers run it inside their own ``transaction()`` block so the
money movement and the booking/report/withdrawal change land together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import USER_ACCOUNTS, LedgerAccount, TransactionStatus, TransactionType
from ..core.exceptions import (
    BusinessRuleException,
    InsufficientFundsException,
    NotFoundException,
    ValidationException,
)
from ..models.booking import BookingLockedBalance
from ..models.transaction import Transaction
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .pricing_service import money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

_BUCKET_COLUMNS = {
    LedgerAccount.AVAILABLE: "balance",
    LedgerAccount.LOCKED: "locked_balance",
}


def _read_bucket(user: User, account: LedgerAccount) -> Decimal:
    return Decimal(getattr(user, _BUCKET_COLUMNS[account]) or ZERO)


def _write_bucket(user: User, account: LedgerAccount, value: Decimal) -> None:
    setattr(user, _BUCKET_COLUMNS[account], value)


@dataclass(frozen=True)
class LedgerReconciliation:
    """Stored balances versus balances recomputed from the user's transactions."""

    user_id: str
    transaction_count: int
    expected_available: Decimal
    expected_locked: Decimal
    actual_available: Decimal
    actual_locked: Decimal

    @property
    def available_drift(self) -> Decimal:
        return self.actual_available - self.expected_available

    @property
    def locked_drift(self) -> Decimal:
        return self.actual_locked - self.expected_locked

    @property
    def is_consistent(self) -> bool:
        return self.available_drift == ZERO and self.locked_drift == ZERO


class LedgerService(BaseService):
    """Double-entry style balance engine over ``User.balance`` / ``User.locked_balance``."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.locked_balance_repository = RepositoryFactory.create_locked_balance_repository(db)

    # ------------------------------------------------------------------
    # Core primitive
    # ------------------------------------------------------------------

    def apply_transaction(
        self,
        *,
        transaction_type: TransactionType,
        amount: Decimal,
        debit_account: LedgerAccount,
        credit_account: LedgerAccount,
        from_user_id: Optional[str] = None,
        to_user_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        bank_account_id: Optional[str] = None,
        description: Optional[str] = None,
        proof_url: Optional[str] = None,
    ) -> Transaction:
        """
        Move ``amount`` from one bucket to another and record it.

        Raises ``InsufficientFundsException`` before any mutation when the
        debited user bucket cannot cover the amount.
        """
        amount = money(Decimal(amount))
        if amount <= ZERO:
            raise ValidationException(
                "Transaction amount must be positive",
                code="INVALID_AMOUNT",
                details={"amount": str(amount), "type": transaction_type.value},
            )
        if debit_account == credit_account and from_user_id == to_user_id:
            raise ValidationException(
                "Debit and credit sides are the same bucket",
                code="INVALID_LEDGER_ACCOUNTS",
                details={"account": debit_account.value},
            )
        if debit_account in USER_ACCOUNTS and not from_user_id:
            raise ValidationException(
                "A user is required on the debit side", code="INVALID_LEDGER_ACCOUNTS"
            )
        if credit_account in USER_ACCOUNTS and not to_user_id:
            raise ValidationException(
                "A user is required on the credit side", code="INVALID_LEDGER_ACCOUNTS"
            )

        debit_user_id = from_user_id if debit_account in USER_ACCOUNTS else None
        credit_user_id = to_user_id if credit_account in USER_ACCOUNTS else None
        users = self.user_repository.lock_many([debit_user_id, credit_user_id])
        for user_id in (debit_user_id, credit_user_id):
            if user_id and user_id not in users:
                raise NotFoundException(
                    "User not found", code="USER_NOT_FOUND", details={"user_id": user_id}
                )

        debit_user = users.get(debit_user_id) if debit_user_id else None
        credit_user = users.get(credit_user_id) if credit_user_id else None

        if debit_user is not None:
            current = _read_bucket(debit_user, debit_account)
            if current < amount:
                raise InsufficientFundsException(
                    debit_user.id, debit_account.value, current, amount
                )
            _write_bucket(debit_user, debit_account, current - amount)
        if credit_user is not None:
            _write_bucket(credit_user, credit_account, _read_bucket(credit_user, credit_account) + amount)

        if credit_user is not None:
            balance_after: Optional[Decimal] = _read_bucket(credit_user, credit_account)
        elif debit_user is not None:
            balance_after = _read_bucket(debit_user, debit_account)
        else:
            balance_after = None

        txn = self.transaction_repository.create(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            booking_id=booking_id,
            bank_account_id=bank_account_id,
            type=transaction_type,
            status=TransactionStatus.COMPLETED,
            debit_account=debit_account,
            credit_account=credit_account,
            amount=amount,
            balance_after=balance_after,
            description=description,
            proof_url=proof_url,
        )
        prometheus_metrics.record_ledger_transaction(transaction_type.value)
        self.logger.info(
            "Ledger %s %s %s:%s -> %s:%s",
            transaction_type.value,
            amount,
            from_user_id or "-",
            debit_account.value,
            to_user_id or "-",
            credit_account.value,
            extra={
                "transaction_id": txn.id,
                "transaction_type": transaction_type.value,
                "amount": str(amount),
                "booking_id": booking_id,
            },
        )
        return txn

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    def _escrow_for(self, booking_id: str) -> Optional[BookingLockedBalance]:
        return self.locked_balance_repository.get_for_booking(booking_id, for_update=True)

    def escrow_amount(self, booking_id: str) -> Decimal:
        escrow = self.locked_balance_repository.get_for_booking(booking_id)
        return Decimal(escrow.amount) if escrow else ZERO

    def lock_funds(
        self,
        *,
        booking_id: str,
        payer_id: str,
        owner_id: str,
        gross_amount: Decimal,
        platform_fee: Decimal = ZERO,
    ) -> List[Transaction]:
        """
        Record a confirmed payment into the owner's escrow.

        ``booking_payment`` external -> owner locked for the gross amount,
        then ``platform_fee`` owner locked -> platform. Escrow grows by
        gross - fee.
        """
        gross_amount = money(Decimal(gross_amount))
        platform_fee = money(Decimal(platform_fee or ZERO))
        if platform_fee < ZERO or platform_fee > gross_amount:
            raise ValidationException(
                "Platform fee must be between 0 and the paid amount",
                code="INVALID_PLATFORM_FEE",
                details={"gross_amount": str(gross_amount), "platform_fee": str(platform_fee)},
            )

        transactions = [
            self.apply_transaction(
                transaction_type=TransactionType.BOOKING_PAYMENT,
                amount=gross_amount,
                from_user_id=payer_id,
                to_user_id=owner_id,
                debit_account=LedgerAccount.EXTERNAL,
                credit_account=LedgerAccount.LOCKED,
                booking_id=booking_id,
                description="Booking payment held in escrow",
            )
        ]
        if platform_fee > ZERO:
            transactions.append(
                self.apply_transaction(
                    transaction_type=TransactionType.PLATFORM_FEE,
                    amount=platform_fee,
                    from_user_id=owner_id,
                    debit_account=LedgerAccount.LOCKED,
                    credit_account=LedgerAccount.PLATFORM,
                    booking_id=booking_id,
                    description="Platform fee",
                )
            )

        escrow = self._escrow_for(booking_id)
        if escrow is None:
            escrow = self.locked_balance_repository.create(
                booking_id=booking_id, owner_id=owner_id, amount=ZERO
            )
        escrow.amount = Decimal(escrow.amount) + gross_amount - platform_fee
        return transactions

    def release_funds(self, booking_id: str) -> Optional[Transaction]:
        """Pay the booking's escrow out to the owner's available balance."""
        escrow = self._escrow_for(booking_id)
        if escrow is None or Decimal(escrow.amount) <= ZERO:
            return None
        txn = self.apply_transaction(
            transaction_type=TransactionType.OWNER_PAYOUT,
            amount=Decimal(escrow.amount),
            from_user_id=escrow.owner_id,
            to_user_id=escrow.owner_id,
            debit_account=LedgerAccount.LOCKED,
            credit_account=LedgerAccount.AVAILABLE,
            booking_id=booking_id,
            description="Booking settled",
        )
        escrow.amount = ZERO
        return txn

    def platform_fee_collected(self, booking_id: str) -> Decimal:
        fees = self.transaction_repository.list_for_booking(booking_id, TransactionType.PLATFORM_FEE)
        refunds = self.transaction_repository.list_for_booking(
            booking_id, TransactionType.PLATFORM_FEE_REFUND
        )
        return sum((t.amount for t in fees), ZERO) - sum((t.amount for t in refunds), ZERO)

    def refund_funds(
        self,
        *,
        booking_id: str,
        renter_id: str,
        amount: Decimal,
        platform_share: Optional[Decimal] = None,
    ) -> List[Transaction]:
        """
        Return ``amount`` to the renter's available balance.

        The platform fee already taken for the booking goes back into
        escrow first, so a full refund drains escrow to exactly zero.
        ``platform_share`` caps how much of that fee is returned; the rest
        of the refund comes out of the owner's escrow.
        """
        amount = money(Decimal(amount))
        escrow = self._escrow_for(booking_id)
        if escrow is None:
            raise BusinessRuleException(
                "Booking has no escrow to refund",
                code="NO_ESCROW",
                details={"booking_id": booking_id},
            )

        transactions: List[Transaction] = []
        fee_collected = self.platform_fee_collected(booking_id)
        if platform_share is not None:
            fee_collected = min(fee_collected, money(Decimal(platform_share)))
        if fee_collected > ZERO:
            transactions.append(
                self.apply_transaction(
                    transaction_type=TransactionType.PLATFORM_FEE_REFUND,
                    amount=fee_collected,
                    to_user_id=escrow.owner_id,
                    debit_account=LedgerAccount.PLATFORM,
                    credit_account=LedgerAccount.LOCKED,
                    booking_id=booking_id,
                    description="Platform fee returned for refund",
                )
            )

        remaining = Decimal(escrow.amount) + fee_collected - amount
        if remaining < ZERO:
            raise BusinessRuleException(
                "Refund exceeds the booking's escrow",
                code="REFUND_EXCEEDS_ESCROW",
                details={
                    "booking_id": booking_id,
                    "escrow": str(Decimal(escrow.amount) + fee_collected),
                    "requested": str(amount),
                },
            )
        transactions.append(
            self.apply_transaction(
                transaction_type=TransactionType.REFUND,
                amount=amount,
                from_user_id=escrow.owner_id,
                to_user_id=renter_id,
                debit_account=LedgerAccount.LOCKED,
                credit_account=LedgerAccount.AVAILABLE,
                booking_id=booking_id,
                description="Booking refund",
            )
        )
        escrow.amount = remaining
        return transactions

    # ------------------------------------------------------------------
    # Compensation and withdrawals
    # ------------------------------------------------------------------

    def charge_compensation(
        self,
        *,
        from_user_id: str,
        amount: Decimal,
        to_user_id: Optional[str] = None,
        settle_externally: bool = False,
        booking_id: Optional[str] = None,
        proof_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """Compensation from the at-fault user to the claimant, or the platform if none."""
        if settle_externally and not proof_url:
            raise ValidationException(
                "External settlement requires a payment proof",
                code="PROOF_REQUIRED",
            )
        return self.apply_transaction(
            transaction_type=TransactionType.COMPENSATION_PAYOUT,
            amount=amount,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            debit_account=LedgerAccount.EXTERNAL if settle_externally else LedgerAccount.AVAILABLE,
            credit_account=LedgerAccount.AVAILABLE if to_user_id else LedgerAccount.PLATFORM,
            booking_id=booking_id,
            proof_url=proof_url,
            description=description or "Compensation",
        )

    def payout_withdrawal(
        self,
        *,
        user_id: str,
        amount: Decimal,
        bank_account_id: str,
        proof_url: Optional[str] = None,
    ) -> Transaction:
        return self.apply_transaction(
            transaction_type=TransactionType.WITHDRAWAL_PAYOUT,
            amount=amount,
            from_user_id=user_id,
            debit_account=LedgerAccount.AVAILABLE,
            credit_account=LedgerAccount.EXTERNAL,
            bank_account_id=bank_account_id,
            proof_url=proof_url,
            description="Withdrawal to bank account",
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @BaseService.measure_operation("get_history")
    def get_history(
        self,
        user_id: str,
        *,
        transaction_type: Optional[TransactionType] = None,
        booking_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        return self.transaction_repository.list_for_user(
            user_id,
            transaction_type=transaction_type,
            booking_id=booking_id,
            since=since,
            until=until,
            limit=limit,
        )

    @BaseService.measure_operation("reconcile_user")
    def reconcile_user(
        self,
        user_id: str,
        *,
        initial_balance: Decimal = ZERO,
        initial_locked_balance: Decimal = ZERO,
    ) -> LedgerReconciliation:
        """Recompute both buckets from completed transactions and compare."""
        user = self.user_repository.get_by_id(user_id, include_deleted=True)
        if user is None:
            raise NotFoundException(
                "User not found", code="USER_NOT_FOUND", details={"user_id": user_id}
            )

        transactions = self.transaction_repository.list_for_user(user_id)
        totals: Dict[LedgerAccount, Decimal] = {
            LedgerAccount.AVAILABLE: Decimal(initial_balance),
            LedgerAccount.LOCKED: Decimal(initial_locked_balance),
        }
        for txn in transactions:
            for account in USER_ACCOUNTS:
                totals[account] += txn.signed_amount_for(user_id, account)

        result = LedgerReconciliation(
            user_id=user_id,
            transaction_count=len(transactions),
            expected_available=totals[LedgerAccount.AVAILABLE],
            expected_locked=totals[LedgerAccount.LOCKED],
            actual_available=Decimal(user.balance),
            actual_locked=Decimal(user.locked_balance),
        )
        if not result.is_consistent:
            self.logger.warning(
                "Ledger drift for user %s: available %s, locked %s",
                user_id,
                result.available_drift,
                result.locked_drift,
                extra={"user_id": user_id},
            )
        return result
