"""Payment order repository."""

from __future__ import annotations

from datetime import datetime
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.enums import PaymentOrderStatus, PaymentPurpose
from ..models.payment_order import PaymentOrder
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentOrderRepository(BaseRepository[PaymentOrder]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, PaymentOrder)

    def get_by_order_code(self, order_code: int, *, for_update: bool = False) -> PaymentOrder | None:
        query = self._build_query().filter(PaymentOrder.order_code == order_code)
        if for_update:
            query = self._lock(query)
        return query.first()

    def find_open(self, booking_id: str, purpose: PaymentPurpose | None = None) -> list[PaymentOrder]:
        query = self._build_query().filter(
            PaymentOrder.booking_id == booking_id,
            PaymentOrder.status == PaymentOrderStatus.PENDING,
        )
        if purpose is not None:
            query = query.filter(PaymentOrder.purpose == purpose)
        return self._execute_query(query.order_by(PaymentOrder.created_at.desc()))

    def next_attempt(self, booking_id: str, purpose: PaymentPurpose) -> int:
        query = self.db.query(func.max(PaymentOrder.attempt)).filter(
            PaymentOrder.booking_id == booking_id,
            PaymentOrder.purpose == purpose,
        )
        current = self._execute_scalar(query)
        return int(current or 0) + 1

    def list_for_booking(self, booking_id: str) -> list[PaymentOrder]:
        query = self._build_query().filter(PaymentOrder.booking_id == booking_id)
        return self._execute_query(query.order_by(PaymentOrder.created_at))

    def find_stale_pending(self, created_before: datetime, limit: int = 100) -> list[PaymentOrder]:
        query = (
            self._build_query()
            .filter(
                PaymentOrder.status == PaymentOrderStatus.PENDING,
                PaymentOrder.created_at <= created_before,
            )
            .order_by(PaymentOrder.created_at)
            .limit(limit)
        )
        return self._execute_query(query)
