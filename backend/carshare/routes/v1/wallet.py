# backend/carshare/routes/v1/wallet.py
"""
Wallet routes - API v1

Ledger history, balance reconciliation and withdrawal requests.

Endpoints:
    GET /transactions - Ledger history for the current user
    GET /reconciliation - Recompute balances from the ledger and report drift
    POST /withdrawals - Request a payout (honours Idempotency-Key)
    GET /withdrawals - Own requests, or all requests for staff
    POST /withdrawals/{withdrawal_id}/approve - Staff approval
    POST /withdrawals/{withdrawal_id}/reject - Staff rejection
    POST /withdrawals/{withdrawal_id}/process - Staff records the bank transfer
"""

import asyncio
from datetime import datetime
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import get_current_user, get_ledger_service, get_withdrawal_service
from ...core import idempotency
from ...core.authorization import ensure_staff
from ...core.enums import TransactionType, WithdrawalStatus
from ...core.exceptions import DomainException
from ...core.principal import CurrentUser
from ...schemas.wallet import (
    ReconciliationResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    WithdrawalCreate,
    WithdrawalProcess,
    WithdrawalResponse,
    WithdrawalReview,
)
from ...services.ledger_service import LedgerService
from ...services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wallet-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _target_user(current_user: CurrentUser, user_id: Optional[str]) -> str:
    if user_id and user_id != current_user.user_id:
        ensure_staff(current_user, action="view another user's wallet")
        return user_id
    return current_user.user_id


@router.get("/transactions", response_model=TransactionHistoryResponse)
async def list_transactions(
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    booking_id: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    user_id: Optional[str] = Query(None, description="Staff only: another user's history"),
    current_user: CurrentUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> TransactionHistoryResponse:
    try:
        target = _target_user(current_user, user_id)
        transactions = await asyncio.to_thread(
            ledger_service.get_history,
            target,
            transaction_type=transaction_type,
            booking_id=booking_id,
            since=since,
            until=until,
            limit=limit,
        )
    except DomainException as e:
        handle_domain_exception(e)

    items = [TransactionResponse.model_validate(t) for t in transactions]
    return TransactionHistoryResponse(items=items, count=len(items))


@router.get("/reconciliation", response_model=ReconciliationResponse)
async def reconcile_wallet(
    user_id: Optional[str] = Query(None, description="Staff only: reconcile another user"),
    current_user: CurrentUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> ReconciliationResponse:
    """Replay the user's completed transactions and compare with stored balances."""
    try:
        target = _target_user(current_user, user_id)
        result = await asyncio.to_thread(ledger_service.reconcile_user, target)
    except DomainException as e:
        handle_domain_exception(e)

    return ReconciliationResponse(
        user_id=result.user_id,
        transaction_count=result.transaction_count,
        expected_available=result.expected_available,
        expected_locked=result.expected_locked,
        actual_available=result.actual_available,
        actual_locked=result.actual_locked,
        available_drift=result.available_drift,
        locked_drift=result.locked_drift,
        is_consistent=result.is_consistent,
    )


@router.post(
    "/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED
)
async def create_withdrawal(
    payload: WithdrawalCreate = Body(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: CurrentUser = Depends(get_current_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    raw_key: Optional[str] = None
    if idempotency_key:
        raw_key = idempotency.build_raw_key(
            "POST", "/api/v1/wallet/withdrawals", current_user.user_id, idempotency_key
        )
        cached = idempotency.get_cached(raw_key)
        if cached is not None:
            return WithdrawalResponse.model_validate(cached)

    try:
        request = await asyncio.to_thread(
            withdrawal_service.create_request,
            current_user,
            payload.amount,
            payload.bank_account_id,
        )
    except DomainException as e:
        handle_domain_exception(e)

    response = WithdrawalResponse.model_validate(request)
    if raw_key is not None:
        idempotency.set_cached(raw_key, response.model_dump(mode="json"))
    return response


@router.get("/withdrawals", response_model=List[WithdrawalResponse])
async def list_withdrawals(
    status_filter: Optional[WithdrawalStatus] = Query(None, alias="status"),
    current_user: CurrentUser = Depends(get_current_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> List[WithdrawalResponse]:
    requests = await asyncio.to_thread(
        withdrawal_service.list_requests, current_user, status_filter
    )
    return [WithdrawalResponse.model_validate(r) for r in requests]


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(
    withdrawal_id: str = Path(..., description="Withdrawal ULID", pattern=ULID_PATH_PATTERN),
    review: Optional[WithdrawalReview] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    try:
        request = await asyncio.to_thread(
            withdrawal_service.approve_request,
            current_user,
            withdrawal_id,
            review.note if review else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return WithdrawalResponse.model_validate(request)


@router.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    withdrawal_id: str = Path(..., description="Withdrawal ULID", pattern=ULID_PATH_PATTERN),
    review: Optional[WithdrawalReview] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    try:
        request = await asyncio.to_thread(
            withdrawal_service.reject_request,
            current_user,
            withdrawal_id,
            review.note if review else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return WithdrawalResponse.model_validate(request)


@router.post("/withdrawals/{withdrawal_id}/process", response_model=WithdrawalResponse)
async def process_withdrawal(
    withdrawal_id: str = Path(..., description="Withdrawal ULID", pattern=ULID_PATH_PATTERN),
    payload: Optional[WithdrawalProcess] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    """Debit the available balance and record the payout transaction."""
    try:
        request = await asyncio.to_thread(
            withdrawal_service.process_request,
            current_user,
            withdrawal_id,
            payload.proof_url if payload else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return WithdrawalResponse.model_validate(request)
