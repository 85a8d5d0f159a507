# backend/carshare/services/withdrawal_service.py
"""Withdrawal requests: user request, staff review, payout on processing."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.authorization import ensure_staff
from ..core.config import settings
from ..core.enums import WithdrawalStatus
from ..core.exceptions import (
    ConflictException,
    ForbiddenException,
    InsufficientFundsException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import CurrentUser
from ..domain.state_machines import transition_withdrawal
from ..models.withdrawal import WithdrawalRequest
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ledger_service import LedgerService
from .pricing_service import money

logger = logging.getLogger(__name__)


class WithdrawalService(BaseService):
    def __init__(self, db: Session, ledger_service: Optional[LedgerService] = None):
        super().__init__(db)
        self.withdrawal_repository = RepositoryFactory.create_withdrawal_repository(db)
        self.bank_account_repository = RepositoryFactory.create_bank_account_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.ledger_service = ledger_service or LedgerService(db)

    def _lock_request(self, request_id: str) -> WithdrawalRequest:
        request = self.withdrawal_repository.lock(request_id)
        if request is None:
            raise NotFoundException(
                "Withdrawal request not found",
                code="WITHDRAWAL_NOT_FOUND",
                details={"withdrawal_id": request_id},
            )
        return request

    def _ensure_covered(self, user_id: str, amount: Decimal, exclude_id: Optional[str]) -> None:
        user = self.user_repository.lock_many([user_id]).get(user_id)
        if user is None:
            raise NotFoundException(
                "User not found", code="USER_NOT_FOUND", details={"user_id": user_id}
            )
        reserved = self.withdrawal_repository.open_total_for_user(user_id, exclude_id=exclude_id)
        spendable = Decimal(user.balance) - reserved
        if amount > spendable:
            raise InsufficientFundsException(user_id, "available", spendable, amount)

    @BaseService.measure_operation("create_withdrawal")
    def create_request(
        self, actor: CurrentUser, amount: Decimal, bank_account_id: str
    ) -> WithdrawalRequest:
        """
        Request a payout of ``amount`` from the available balance.

        One open (pending or approved) request per user; the amount must fit
        in the balance after other open requests.
        """
        amount = money(Decimal(amount))
        if amount < settings.withdrawal_min_amount or amount > settings.withdrawal_max_amount:
            raise ValidationException(
                "Withdrawal amount is outside the allowed range",
                code="INVALID_WITHDRAWAL_AMOUNT",
                details={
                    "amount": str(amount),
                    "min": str(settings.withdrawal_min_amount),
                    "max": str(settings.withdrawal_max_amount),
                },
            )

        with self.transaction():
            account = self.bank_account_repository.get_by_id(bank_account_id)
            if account is None:
                raise NotFoundException(
                    "Bank account not found",
                    code="BANK_ACCOUNT_NOT_FOUND",
                    details={"bank_account_id": bank_account_id},
                )
            if account.user_id != actor.user_id:
                raise ForbiddenException(
                    "Bank account does not belong to you",
                    code="FORBIDDEN",
                    details={"bank_account_id": bank_account_id},
                )
            # user row lock serialises concurrent requests by the same user
            self.user_repository.lock_many([actor.user_id])
            if self.withdrawal_repository.find_open_for_user(actor.user_id):
                raise ConflictException(
                    "You already have an open withdrawal request",
                    code="WITHDRAWAL_ALREADY_OPEN",
                )
            self._ensure_covered(actor.user_id, amount, exclude_id=None)
            request = self.withdrawal_repository.create(
                user_id=actor.user_id,
                bank_account_id=account.id,
                amount=amount,
                status=WithdrawalStatus.PENDING,
            )

        self.log_operation(
            "create_withdrawal", withdrawal_id=request.id, user_id=actor.user_id, amount=str(amount)
        )
        return request

    @BaseService.measure_operation("approve_withdrawal")
    def approve_request(
        self, admin: CurrentUser, request_id: str, note: Optional[str] = None
    ) -> WithdrawalRequest:
        ensure_staff(admin, action="approve withdrawals")
        with self.transaction():
            request = self._lock_request(request_id)
            transition_withdrawal(request, WithdrawalStatus.APPROVED)
            self._ensure_covered(request.user_id, Decimal(request.amount), exclude_id=request.id)
            request.admin_note = note
        return request

    @BaseService.measure_operation("reject_withdrawal")
    def reject_request(
        self, admin: CurrentUser, request_id: str, note: Optional[str] = None
    ) -> WithdrawalRequest:
        ensure_staff(admin, action="reject withdrawals")
        with self.transaction():
            request = self._lock_request(request_id)
            transition_withdrawal(request, WithdrawalStatus.REJECTED)
            request.admin_note = note
            request.processed_by_id = admin.user_id
            request.processed_at = datetime.now(timezone.utc)
        return request

    @BaseService.measure_operation("process_withdrawal")
    def process_request(
        self,
        admin: CurrentUser,
        request_id: str,
        proof_url: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> WithdrawalRequest:
        """Record the bank transfer: debit the balance and link the payout transaction."""
        ensure_staff(admin, action="process withdrawals")
        with self.transaction():
            request = self._lock_request(request_id)
            transition_withdrawal(request, WithdrawalStatus.PROCESSED)
            txn = self.ledger_service.payout_withdrawal(
                user_id=request.user_id,
                amount=Decimal(request.amount),
                bank_account_id=request.bank_account_id,
                proof_url=proof_url,
            )
            request.transaction_id = txn.id
            request.processed_by_id = admin.user_id
            request.processed_at = now or datetime.now(timezone.utc)

        self.log_operation(
            "process_withdrawal", withdrawal_id=request.id, transaction_id=request.transaction_id
        )
        return request

    def list_requests(
        self, actor: CurrentUser, status: Optional[WithdrawalStatus] = None
    ) -> List[WithdrawalRequest]:
        if actor.is_staff:
            return self.withdrawal_repository.list_requests(status=status)
        return self.withdrawal_repository.list_requests(user_id=actor.user_id, status=status)
