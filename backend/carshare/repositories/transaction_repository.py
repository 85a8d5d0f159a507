# backend/carshare/repositories/transaction_repository.py
"""Ledger transaction repository (append-only)."""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.enums import TransactionStatus, TransactionType
from ..models.transaction import Transaction
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class TransactionRepository(BaseRepository[Transaction]):
    def __init__(self, db: Session):
        super().__init__(db, Transaction)

    def list_for_user(
        self,
        user_id: str,
        *,
        transaction_type: Optional[TransactionType] = None,
        booking_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        status: Optional[TransactionStatus] = TransactionStatus.COMPLETED,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        """Transactions where the user is either party, oldest first."""
        query = self._build_query().filter(
            or_(Transaction.from_user_id == user_id, Transaction.to_user_id == user_id)
        )
        if status is not None:
            query = query.filter(Transaction.status == status)
        if transaction_type is not None:
            query = query.filter(Transaction.type == transaction_type)
        if booking_id is not None:
            query = query.filter(Transaction.booking_id == booking_id)
        if since is not None:
            query = query.filter(Transaction.created_at >= since)
        if until is not None:
            query = query.filter(Transaction.created_at <= until)
        query = query.order_by(Transaction.created_at, Transaction.id)
        if limit is not None:
            query = query.limit(limit)
        return self._execute_query(query)

    def list_for_booking(
        self, booking_id: str, transaction_type: Optional[TransactionType] = None
    ) -> List[Transaction]:
        query = self._build_query().filter(Transaction.booking_id == booking_id)
        if transaction_type is not None:
            query = query.filter(Transaction.type == transaction_type)
        return self._execute_query(query.order_by(Transaction.created_at, Transaction.id))
