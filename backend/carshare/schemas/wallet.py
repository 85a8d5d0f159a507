# backend/carshare/schemas/wallet.py
"""Wallet schemas: ledger history, reconciliation and withdrawals."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from ..core.enums import LedgerAccount, TransactionStatus, TransactionType, WithdrawalStatus
from .base import MoneyStr, StandardizedModel
from ._strict_base import StrictModel, StrictRequestModel


class TransactionResponse(StandardizedModel):
    id: str
    type: TransactionType
    status: TransactionStatus
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    debit_account: LedgerAccount
    credit_account: LedgerAccount
    booking_id: Optional[str] = None
    bank_account_id: Optional[str] = None
    amount: MoneyStr
    balance_after: Optional[MoneyStr] = None
    description: Optional[str] = None
    proof_url: Optional[str] = None
    created_at: datetime


class TransactionHistoryResponse(StrictModel):
    items: List[TransactionResponse]
    count: int


class ReconciliationResponse(StrictModel):
    user_id: str
    transaction_count: int
    expected_available: MoneyStr
    expected_locked: MoneyStr
    actual_available: MoneyStr
    actual_locked: MoneyStr
    available_drift: MoneyStr
    locked_drift: MoneyStr
    is_consistent: bool


class WithdrawalCreate(StrictRequestModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    bank_account_id: str = Field(..., min_length=1, max_length=26)


class WithdrawalReview(StrictRequestModel):
    note: Optional[str] = Field(None, max_length=1000)


class WithdrawalProcess(StrictRequestModel):
    proof_url: Optional[str] = Field(None, max_length=2048)


class WithdrawalResponse(StandardizedModel):
    id: str
    user_id: str
    bank_account_id: str
    amount: MoneyStr
    status: WithdrawalStatus
    admin_note: Optional[str] = None
    processed_by_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    created_at: datetime
