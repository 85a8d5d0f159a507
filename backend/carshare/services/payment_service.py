# backend/carshare/services/payment_service.py
"""
Payment Service

Issues PayOS checkout links for bookings, extensions and late-return fees,
and applies gateway confirmations to the booking and the ledger.

Link creation runs in three phases so no DB transaction is open while the
gateway is called:

1. Record (or reuse) a pending ``PaymentOrder`` and commit.
2. Call the gateway under the Redis booking mutex.
3. Store the link on the order, or mark the order ``failed``.

Confirmations are at-least-once. The booking row and then the order row
are locked, and an order that is already ``paid`` makes the delivery a
no-op, so replays never double-lock funds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import hashlib
import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.authorization import ensure_booking_renter
from ..core.booking_lock import booking_lock_sync
from ..core.config import settings
from ..core.enums import BookingStatus, PaymentOrderStatus, PaymentPurpose
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    GatewayException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import CurrentUser
from ..integrations.payos_client import (
    SUCCESS_CODE,
    PaymentGateway,
    PaymentGatewayError,
    get_payment_gateway,
    to_gateway_amount,
)
from ..models.booking import Booking
from ..models.payment_order import PaymentOrder
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ledger_service import LedgerService

if TYPE_CHECKING:
    from .booking_service import BookingService

logger = logging.getLogger(__name__)

CANCELLED_BOOKING_STATUSES = (
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
    BookingStatus.REJECTED,
)

_DESCRIPTIONS = {
    PaymentPurpose.BOOKING: "Car rental",
    PaymentPurpose.EXTENSION: "Rental extension",
    PaymentPurpose.EXCESS_FEE: "Late return fee",
}


def order_code_for(booking_id: str, purpose: PaymentPurpose, attempt: int) -> int:
    """Deterministic 48-bit order code; stays below PayOS's 2^53 limit."""
    digest = hashlib.blake2b(
        f"{booking_id}:{purpose.value}:{attempt}".encode("utf-8"), digest_size=6
    ).digest()
    return int.from_bytes(digest, "big")


@dataclass(frozen=True)
class WebhookOutcome:
    """Result of applying one gateway notification."""

    outcome: str  # processed | duplicate | ignored | rejected | failed
    order_code: Optional[int] = None
    booking_id: Optional[str] = None
    reason: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "order_code": self.order_code,
            "booking_id": self.booking_id,
            "reason": self.reason,
        }


class PaymentService(BaseService):
    """Gateway-facing side of the booking lifecycle."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        ledger_service: Optional[LedgerService] = None,
        booking_service: Optional["BookingService"] = None,
    ):
        super().__init__(db)
        self.gateway = gateway or get_payment_gateway()
        self.ledger_service = ledger_service or LedgerService(db)
        self._booking_service = booking_service
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.car_repository = RepositoryFactory.create_car_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.payment_order_repository = RepositoryFactory.create_payment_order_repository(db)

    @property
    def booking_service(self) -> "BookingService":
        if self._booking_service is None:
            from .booking_service import BookingService

            self._booking_service = BookingService(
                self.db, payment_service=self, ledger_service=self.ledger_service
            )
        return self._booking_service

    # ------------------------------------------------------------------
    # Payment links
    # ------------------------------------------------------------------

    def _due_purpose(self, booking: Booking) -> PaymentPurpose:
        if booking.status == BookingStatus.APPROVED and not booking.is_paid:
            return PaymentPurpose.BOOKING
        if booking.status == BookingStatus.IN_PROGRESS:
            if booking.is_car_returned and booking.awaiting_excess_payment:
                return PaymentPurpose.EXCESS_FEE
            if booking.pending_extension_end_time is not None and not booking.is_extension_paid:
                return PaymentPurpose.EXTENSION
        raise BusinessRuleException(
            "Nothing is due for this booking",
            code="PAYMENT_NOT_DUE",
            details={"booking_id": booking.id, "status": BookingStatus(booking.status).value},
        )

    def _amount_due(self, booking: Booking, purpose: PaymentPurpose) -> Decimal:
        if purpose != self._due_purpose(booking):
            raise BusinessRuleException(
                f"No {purpose.value} payment is due for this booking",
                code="PAYMENT_NOT_DUE",
                details={"booking_id": booking.id, "purpose": purpose.value},
            )
        if purpose == PaymentPurpose.BOOKING:
            return Decimal(booking.total_amount)
        if purpose == PaymentPurpose.EXTENSION:
            return Decimal(booking.extension_amount)
        return Decimal(booking.excess_day_fee)

    def _prepare_order(
        self, booking_id: str, purpose: Optional[PaymentPurpose], now: datetime
    ) -> PaymentOrder:
        booking = self.booking_repository.lock(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        purpose = purpose or self._due_purpose(booking)
        amount = self._amount_due(booking, purpose)

        for existing in self.payment_order_repository.find_open(booking.id, purpose):
            if existing.expires_at is not None and existing.expires_at <= now:
                existing.status = PaymentOrderStatus.EXPIRED
                existing.failure_reason = "Payment link expired"
            elif Decimal(existing.amount) != amount:
                existing.status = PaymentOrderStatus.CANCELLED
                existing.failure_reason = "Amount due changed"
            else:
                return existing

        attempt = self.payment_order_repository.next_attempt(booking.id, purpose)
        order = self.payment_order_repository.create(
            booking_id=booking.id,
            order_code=order_code_for(booking.id, purpose, attempt),
            purpose=purpose,
            attempt=attempt,
            amount=amount,
            status=PaymentOrderStatus.PENDING,
            expires_at=now + timedelta(minutes=settings.payment_link_ttl_minutes),
        )
        if purpose == PaymentPurpose.BOOKING:
            booking.payment_order_code = order.order_code
        return order

    def _mark_order_failed(self, order_code: int, reason: str) -> None:
        with self.transaction():
            order = self.payment_order_repository.get_by_order_code(order_code, for_update=True)
            if order is not None and order.status == PaymentOrderStatus.PENDING:
                order.status = PaymentOrderStatus.FAILED
                order.failure_reason = reason[:500]

    def issue_payment_link(
        self,
        booking_id: str,
        purpose: Optional[PaymentPurpose] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PaymentOrder:
        """Create or reuse the checkout link for whatever the booking owes."""
        now = now or datetime.now(timezone.utc)

        with self.transaction():
            order = self._prepare_order(booking_id, purpose, now)
            if order.checkout_url:
                return order
            booking = self.booking_repository.get_by_id(booking_id)
            renter = self.user_repository.get_by_id(booking.renter_id, include_deleted=True)
            order_code = order.order_code
            order_purpose = PaymentPurpose(order.purpose)
            amount = Decimal(order.amount)
            expires_at = order.expires_at

        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                raise ConflictException(
                    "Another payment operation is in progress for this booking",
                    code="BOOKING_LOCKED",
                    details={"booking_id": booking_id},
                )
            try:
                link = self.gateway.create_payment_link(
                    order_code=order_code,
                    amount=amount,
                    description=_DESCRIPTIONS[order_purpose],
                    buyer_name=renter.name if renter else None,
                    return_url=settings.payment_return_url,
                    cancel_url=settings.payment_cancel_url,
                    expired_at=expires_at,
                )
            except PaymentGatewayError as exc:
                self.logger.error(
                    "Payment link creation failed for booking %s: %s",
                    booking_id,
                    exc,
                    extra={"booking_id": booking_id, "order_code": order_code},
                )
                self._mark_order_failed(order_code, str(exc))
                raise GatewayException(
                    "Could not create a payment link; please retry",
                    details={"booking_id": booking_id, "order_code": order_code},
                ) from exc

        with self.transaction():
            order = self.payment_order_repository.get_by_order_code(order_code, for_update=True)
            if order.status == PaymentOrderStatus.PENDING:
                order.payment_link_id = link.payment_link_id
                order.checkout_url = link.checkout_url
                order.qr_code = link.qr_code

        self.log_operation(
            "issue_payment_link",
            booking_id=booking_id,
            order_code=order_code,
            purpose=order_purpose.value,
            amount=str(amount),
        )
        return order

    @BaseService.measure_operation("create_payment_link")
    def create_payment_link(
        self,
        actor: CurrentUser,
        booking_id: str,
        purpose: Optional[PaymentPurpose] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PaymentOrder:
        """Renter-facing retry path: (re)issue the link for what is currently due."""
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        ensure_booking_renter(actor, booking, action="pay for this booking", allow_staff=True)
        return self.issue_payment_link(booking_id, purpose, now=now)

    def list_orders(self, booking_id: str) -> list[PaymentOrder]:
        return self.payment_order_repository.list_for_booking(booking_id)

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Return the signed ``data`` object or raise ``ValidationException``."""
        data = payload.get("data")
        signature = payload.get("signature")
        if not isinstance(data, dict) or not isinstance(signature, str):
            raise ValidationException("Malformed webhook payload", code="INVALID_WEBHOOK")
        if not self.gateway.verify_webhook_signature(data, signature):
            raise ValidationException("Invalid webhook signature", code="INVALID_SIGNATURE")
        if "orderCode" not in data:
            raise ValidationException("Webhook is missing orderCode", code="INVALID_WEBHOOK")
        return data

    @BaseService.measure_operation("handle_payment_webhook")
    def handle_payment_webhook(
        self, payload: Mapping[str, Any], *, now: Optional[datetime] = None
    ) -> WebhookOutcome:
        data = self.verify_webhook(payload)
        outcome = self.apply_confirmation(data, now=now)
        prometheus_metrics.record_payment_webhook(outcome.outcome)
        return outcome

    def _reject(self, order: PaymentOrder, booking: Booking, reason: str) -> WebhookOutcome:
        order.status = PaymentOrderStatus.REJECTED
        order.failure_reason = reason
        self.logger.warning(
            "Payment for order %s rejected: %s",
            order.order_code,
            reason,
            extra={"booking_id": booking.id, "order_code": order.order_code},
        )
        return WebhookOutcome("rejected", order.order_code, booking.id, reason)

    def apply_confirmation(
        self, data: Mapping[str, Any], *, now: Optional[datetime] = None
    ) -> WebhookOutcome:
        """Apply a verified gateway notification; safe to call repeatedly."""
        now = now or datetime.now(timezone.utc)
        try:
            order_code = int(data["orderCode"])
        except (KeyError, TypeError, ValueError):
            raise ValidationException("Webhook orderCode is not an integer", code="INVALID_WEBHOOK")

        with self.transaction():
            found = self.payment_order_repository.get_by_order_code(order_code)
            if found is None:
                self.logger.info("Ignoring webhook for unknown order %s", order_code)
                return WebhookOutcome("ignored", order_code, reason="unknown_order")

            booking = self.booking_repository.lock(found.booking_id, include_deleted=True)
            order = self.payment_order_repository.get_by_order_code(order_code, for_update=True)

            if order.status == PaymentOrderStatus.PAID:
                self.logger.info("Duplicate confirmation for order %s", order_code)
                return WebhookOutcome("duplicate", order_code, booking.id)

            if str(data.get("code", SUCCESS_CODE)) != SUCCESS_CODE:
                if order.status == PaymentOrderStatus.PENDING:
                    order.status = PaymentOrderStatus.FAILED
                    order.failure_reason = str(data.get("desc") or "Payment failed")[:500]
                    return WebhookOutcome("failed", order_code, booking.id, order.failure_reason)
                return WebhookOutcome("ignored", order_code, booking.id, "order_not_pending")

            if order.status != PaymentOrderStatus.PENDING:
                return self._reject(order, booking, f"order_{PaymentOrderStatus(order.status).value}")
            try:
                paid_amount = int(data.get("amount"))
            except (TypeError, ValueError):
                return self._reject(order, booking, "amount_missing")
            if paid_amount != to_gateway_amount(order.amount):
                return self._reject(order, booking, "amount_mismatch")

            purpose = PaymentPurpose(order.purpose)
            if purpose == PaymentPurpose.BOOKING:
                return self._confirm_booking(order, booking, data, now)
            if purpose == PaymentPurpose.EXTENSION:
                return self._confirm_extension(order, booking, data, now)
            return self._confirm_excess_fee(order, booking, data, now)

    def _mark_paid(self, order: PaymentOrder, data: Mapping[str, Any], now: datetime) -> None:
        order.status = PaymentOrderStatus.PAID
        order.paid_at = now
        order.gateway_reference = data.get("reference")

    def _confirm_booking(
        self, order: PaymentOrder, booking: Booking, data: Mapping[str, Any], now: datetime
    ) -> WebhookOutcome:
        if booking.status in CANCELLED_BOOKING_STATUSES or booking.is_deleted:
            return self._reject(order, booking, f"booking_{BookingStatus(booking.status).value}")
        if booking.status != BookingStatus.APPROVED or booking.is_paid:
            return self._reject(order, booking, "booking_not_payable")

        car = self.car_repository.lock(booking.car_id, include_deleted=True)
        self._mark_paid(order, data, now)
        booking.is_paid = True
        self.ledger_service.lock_funds(
            booking_id=booking.id,
            payer_id=booking.renter_id,
            owner_id=car.owner_id,
            gross_amount=Decimal(order.amount),
            platform_fee=Decimal(booking.platform_fee),
        )
        if booking.start_time <= now:
            self.booking_service.start_trip(booking, car, now)
        self.logger.info(
            "Booking %s paid via order %s",
            booking.id,
            order.order_code,
            extra={"booking_id": booking.id, "amount": str(order.amount)},
        )
        return WebhookOutcome("processed", order.order_code, booking.id)

    def _confirm_extension(
        self, order: PaymentOrder, booking: Booking, data: Mapping[str, Any], now: datetime
    ) -> WebhookOutcome:
        if (
            booking.status != BookingStatus.IN_PROGRESS
            or booking.is_car_returned
            or booking.pending_extension_end_time is None
            or booking.is_extension_paid
        ):
            return self._reject(order, booking, "extension_not_pending")
        if Decimal(order.amount) != Decimal(booking.extension_amount):
            return self._reject(order, booking, "extension_amount_changed")

        car = self.car_repository.lock(booking.car_id, include_deleted=True)
        verdict = self.booking_service.availability_service.check_window(
            car.id,
            booking.end_time,
            booking.pending_extension_end_time,
            car=car,
            exclude_booking_id=booking.id,
            ignore_car_status=True,
        )
        if not verdict.available:
            # the slot was taken after the request; drop the extension
            booking.pending_extension_end_time = None
            booking.extension_amount = Decimal("0")
            booking.is_extension_paid = True
            return self._reject(order, booking, "extension_conflict")

        self._mark_paid(order, data, now)
        booking.end_time = booking.pending_extension_end_time
        booking.pending_extension_end_time = None
        booking.is_extension_paid = True
        booking.total_amount = Decimal(booking.total_amount) + Decimal(booking.extension_amount)
        self.ledger_service.lock_funds(
            booking_id=booking.id,
            payer_id=booking.renter_id,
            owner_id=car.owner_id,
            gross_amount=Decimal(order.amount),
        )
        return WebhookOutcome("processed", order.order_code, booking.id)

    def _confirm_excess_fee(
        self, order: PaymentOrder, booking: Booking, data: Mapping[str, Any], now: datetime
    ) -> WebhookOutcome:
        if booking.status != BookingStatus.IN_PROGRESS or not booking.awaiting_excess_payment:
            return self._reject(order, booking, "excess_fee_not_due")

        car = self.car_repository.lock(booking.car_id, include_deleted=True)
        self._mark_paid(order, data, now)
        booking.is_excess_fee_paid = True
        self.ledger_service.lock_funds(
            booking_id=booking.id,
            payer_id=booking.renter_id,
            owner_id=car.owner_id,
            gross_amount=Decimal(order.amount),
        )
        self.booking_service.settle(booking, car, now)
        return WebhookOutcome("processed", order.order_code, booking.id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("reconcile_pending_orders")
    def reconcile_pending_orders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Ask the gateway about stale pending orders whose webhook never arrived."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=settings.payment_reconcile_after_minutes)
        counts = {"checked": 0, "confirmed": 0, "closed": 0, "unchanged": 0, "errors": 0}

        for order in self.payment_order_repository.find_stale_pending(cutoff):
            counts["checked"] += 1
            order_code = order.order_code
            try:
                info = self.gateway.get_payment_link(order_code)
            except PaymentGatewayError as exc:
                counts["errors"] += 1
                self.logger.warning(
                    "Reconciliation lookup failed for order %s: %s", order_code, exc
                )
                continue

            if info.is_paid:
                outcome = self.apply_confirmation(
                    {
                        "orderCode": order_code,
                        "amount": info.amount_paid,
                        "code": SUCCESS_CODE,
                        "reference": info.reference,
                    },
                    now=now,
                )
                counts["confirmed" if outcome.outcome == "processed" else "unchanged"] += 1
            elif info.is_closed:
                with self.transaction():
                    locked = self.payment_order_repository.get_by_order_code(
                        order_code, for_update=True
                    )
                    if locked.status == PaymentOrderStatus.PENDING:
                        locked.status = (
                            PaymentOrderStatus.CANCELLED
                            if info.status == "CANCELLED"
                            else PaymentOrderStatus.EXPIRED
                        )
                        locked.failure_reason = f"Gateway reported {info.status}"
                counts["closed"] += 1
            else:
                counts["unchanged"] += 1

        if counts["checked"]:
            self.log_operation("reconcile_pending_orders", **counts)
        return counts
