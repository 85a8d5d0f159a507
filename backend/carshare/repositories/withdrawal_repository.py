"""Withdrawal request repository."""

from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.enums import OPEN_WITHDRAWAL_STATUSES, WithdrawalStatus
from ..models.withdrawal import WithdrawalRequest
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WithdrawalRepository(BaseRepository[WithdrawalRequest]):
    def __init__(self, db: Session):
        super().__init__(db, WithdrawalRequest)

    def lock(self, request_id: str) -> Optional[WithdrawalRequest]:
        return self.get_by_id(request_id, for_update=True)

    def find_open_for_user(self, user_id: str) -> List[WithdrawalRequest]:
        query = self._build_query().filter(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.status.in_(list(OPEN_WITHDRAWAL_STATUSES)),
        )
        return self._execute_query(query)

    def open_total_for_user(self, user_id: str, *, exclude_id: Optional[str] = None) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(WithdrawalRequest.amount), 0)).filter(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.status.in_(list(OPEN_WITHDRAWAL_STATUSES)),
        )
        if exclude_id:
            query = query.filter(WithdrawalRequest.id != exclude_id)
        return Decimal(str(self._execute_scalar(query) or 0))

    def list_requests(
        self, *, user_id: Optional[str] = None, status: Optional[WithdrawalStatus] = None
    ) -> List[WithdrawalRequest]:
        query = self._build_query()
        if user_id is not None:
            query = query.filter(WithdrawalRequest.user_id == user_id)
        if status is not None:
            query = query.filter(WithdrawalRequest.status == status)
        return self._execute_query(query.order_by(WithdrawalRequest.created_at.desc()))
