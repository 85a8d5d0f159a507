# backend/carshare/services/booking_service.py
"""
Booking Service for the carshare platform.

Owns the booking lifecycle: creation, owner approval/rejection,
cancellation with refund, expiry of unpaid bookings, trip start, car
return with late fees, and settlement. Every transition goes through
``transition_booking`` so the state machine table is the only place that
decides which moves are legal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.orm import Session

from ..core.authorization import (
    ensure_booking_party,
    ensure_booking_renter,
    ensure_car_owner,
)
from ..core.config import settings
from ..core.enums import BookingStatus, CarStatus, PaymentOrderStatus, PaymentPurpose
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import CurrentUser
from ..domain.state_machines import BOOKING_STATE_MACHINE, transition_booking
from ..models.booking import Booking
from ..models.car import Car
from ..models.payment_order import PaymentOrder
from ..repositories.factory import RepositoryFactory
from .availability_service import AvailabilityService
from .base import BaseService
from .ledger_service import LedgerService
from .pricing_service import PricingService

if TYPE_CHECKING:
    from .payment_service import PaymentService

logger = logging.getLogger(__name__)

OVERDUE_CANCELLATION_REASON = "Car not returned by the previous renter"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class ApprovalResult:
    booking: Booking
    payment_order: PaymentOrder


@dataclass
class BookingDetail:
    """Booking view for parties and staff, with sensitive fields decrypted."""

    booking: Booking
    car: Car
    license_plate: Optional[str]
    renter_phone: Optional[str]
    payment_orders: List[PaymentOrder] = field(default_factory=list)


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Collaborators default to instances over the same session; tests pass
    their own (usually a ``PaymentService`` over a fake gateway).
    """

    def __init__(
        self,
        db: Session,
        payment_service: Optional["PaymentService"] = None,
        ledger_service: Optional[LedgerService] = None,
        availability_service: Optional[AvailabilityService] = None,
        pricing_service: Optional[PricingService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.car_repository = RepositoryFactory.create_car_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.report_repository = RepositoryFactory.create_report_repository(db)
        self.payment_order_repository = RepositoryFactory.create_payment_order_repository(db)
        self.ledger_service = ledger_service or LedgerService(db)
        self.availability_service = availability_service or AvailabilityService(db)
        self.pricing_service = pricing_service or PricingService()
        self._payment_service = payment_service

    @property
    def payment_service(self) -> "PaymentService":
        if self._payment_service is None:
            from .payment_service import PaymentService

            self._payment_service = PaymentService(
                self.db, ledger_service=self.ledger_service, booking_service=self
            )
        return self._payment_service

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.lock(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        return booking

    def _lock_car(self, car_id: str) -> Car:
        car = self.car_repository.lock(car_id, include_deleted=True)
        if car is None:
            raise NotFoundException("Car not found", code="CAR_NOT_FOUND", details={"car_id": car_id})
        return car

    def _close_open_orders(
        self,
        booking_id: str,
        status: PaymentOrderStatus,
        reason: str,
        purpose: Optional[PaymentPurpose] = None,
    ) -> int:
        orders = self.payment_order_repository.find_open(booking_id, purpose)
        for order in orders:
            order.status = status
            order.failure_reason = reason
        return len(orders)

    def _check_bookable(self, car: Car, start: datetime, end: datetime, exclude: Optional[str]) -> None:
        verdict = self.availability_service.check_window(
            car.id,
            start,
            end,
            car=car,
            exclude_booking_id=exclude,
        )
        if not verdict.available:
            raise BookingConflictException(details=verdict.as_details())

    # ------------------------------------------------------------------
    # Creation and owner decisions
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        actor: CurrentUser,
        car_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Create a pending booking for ``[start_time, end_time)``.

        Raises:
            ValidationException: window reversed, in the past, or too long
            NotFoundException: car or renter missing
            ForbiddenException: renter owns the car
            BusinessRuleException: renter banned or owes compensation
            BookingConflictException: car not available for the window
        """
        now = now or datetime.now(timezone.utc)
        start_time = _as_utc(start_time)
        end_time = _as_utc(end_time)
        window = {"start_time": start_time.isoformat(), "end_time": end_time.isoformat()}

        if end_time <= start_time:
            raise ValidationException(
                "End time must be after start time", code="INVALID_BOOKING_WINDOW", details=window
            )
        if start_time < now + timedelta(minutes=settings.booking_min_lead_minutes):
            raise ValidationException(
                "Booking cannot start in the past", code="START_IN_PAST", details=window
            )
        if end_time - start_time > timedelta(days=settings.max_booking_days):
            raise ValidationException(
                f"Bookings are limited to {settings.max_booking_days} days",
                code="BOOKING_TOO_LONG",
                details=window,
            )

        with self.transaction():
            renter = self.user_repository.get_by_id(actor.user_id)
            if renter is None:
                raise NotFoundException(
                    "User not found", code="USER_NOT_FOUND", details={"user_id": actor.user_id}
                )
            if renter.is_banned:
                raise BusinessRuleException(
                    "Your account is banned from booking",
                    code="USER_BANNED",
                    details={"reason": renter.banned_reason},
                )
            if self.report_repository.find_unpaid_assigned_for_user(renter.id):
                raise BusinessRuleException(
                    "Outstanding compensation must be paid before booking",
                    code="OUTSTANDING_COMPENSATION",
                )

            car = self.car_repository.lock(car_id)
            if car is None:
                raise NotFoundException(
                    "Car not found", code="CAR_NOT_FOUND", details={"car_id": car_id}
                )
            if car.owner_id == renter.id:
                raise ForbiddenException(
                    "You cannot book your own car", code="OWN_CAR", details={"car_id": car_id}
                )
            self._check_bookable(car, start_time, end_time, exclude=None)

            quote = self.pricing_service.quote_booking(car.price_per_hour, start_time, end_time)
            booking = self.booking_repository.create(
                renter_id=renter.id,
                car_id=car.id,
                status=BookingStatus.PENDING,
                start_time=start_time,
                end_time=end_time,
                base_price=quote.base_price,
                platform_fee=quote.platform_fee,
                total_amount=quote.total_amount,
            )

        self.log_operation(
            "create_booking",
            booking_id=booking.id,
            car_id=car_id,
            renter_id=actor.user_id,
            total_amount=str(booking.total_amount),
        )
        return booking

    @BaseService.measure_operation("approve_booking")
    def approve_booking(
        self, actor: CurrentUser, booking_id: str, *, now: Optional[datetime] = None
    ) -> ApprovalResult:
        """
        Approve a pending booking and issue its payment link.

        The approval commits before the gateway is called. If the gateway
        fails the booking stays approved and ``GatewayException`` is raised;
        the renter retries through ``PaymentService.create_payment_link``.
        """
        now = now or datetime.now(timezone.utc)

        with self.transaction():
            booking = self._lock_booking(booking_id)
            car = self._lock_car(booking.car_id)
            ensure_car_owner(actor, car, action="approve this booking")
            BOOKING_STATE_MACHINE.ensure(
                BookingStatus(booking.status), BookingStatus.APPROVED, entity_id=booking.id
            )
            self._check_bookable(car, booking.start_time, booking.end_time, exclude=booking.id)
            transition_booking(booking, BookingStatus.APPROVED, now=now)

            overlapping = self.booking_repository.find_overlapping(
                car.id,
                booking.start_time,
                booking.end_time,
                statuses=(BookingStatus.PENDING,),
                exclude_booking_id=booking.id,
            )
            for other in overlapping:
                transition_booking(other, BookingStatus.REJECTED, now=now)
                other.owner_note = "Another booking was approved for this window"

        self.log_operation(
            "approve_booking",
            booking_id=booking.id,
            auto_rejected=[b.id for b in overlapping],
        )
        order = self.payment_service.issue_payment_link(
            booking.id, PaymentPurpose.BOOKING, now=now
        )
        return ApprovalResult(booking=booking, payment_order=order)

    @BaseService.measure_operation("reject_booking")
    def reject_booking(
        self,
        actor: CurrentUser,
        booking_id: str,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        with self.transaction():
            booking = self._lock_booking(booking_id)
            car = self._lock_car(booking.car_id)
            ensure_car_owner(actor, car, action="reject this booking")
            transition_booking(booking, BookingStatus.REJECTED, now=now)
            booking.owner_note = reason
        return booking

    # ------------------------------------------------------------------
    # Cancellation and expiry
    # ------------------------------------------------------------------

    def _cancel_locked(
        self,
        booking: Booking,
        *,
        reason: Optional[str],
        cancelled_by_id: Optional[str],
        now: datetime,
    ) -> None:
        transition_booking(booking, BookingStatus.CANCELLED, now=now)
        booking.cancellation_reason = reason
        booking.cancelled_by_id = cancelled_by_id
        self._close_open_orders(booking.id, PaymentOrderStatus.CANCELLED, "Booking cancelled")

        if not booking.is_paid:
            return
        refundable = self.ledger_service.escrow_amount(
            booking.id
        ) + self.ledger_service.platform_fee_collected(booking.id)
        if refundable <= Decimal("0"):
            return
        self.ledger_service.refund_funds(
            booking_id=booking.id, renter_id=booking.renter_id, amount=refundable
        )
        booking.refund_amount = refundable
        booking.refund_date = now
        booking.is_refund = True
        self.logger.info(
            "Refunded %s for cancelled booking %s",
            refundable,
            booking.id,
            extra={"booking_id": booking.id, "amount": str(refundable)},
        )

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        actor: CurrentUser,
        booking_id: str,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Cancel a pending or approved booking; paid bookings are refunded in full.

        Serialises with the payment webhook on the booking row lock, so a
        cancel after payment always refunds and a payment after cancel is
        rejected.
        """
        now = now or datetime.now(timezone.utc)
        with self.transaction():
            booking = self._lock_booking(booking_id)
            ensure_booking_renter(actor, booking, action="cancel this booking", allow_staff=True)
            self._cancel_locked(booking, reason=reason, cancelled_by_id=actor.user_id, now=now)

        self.log_operation(
            "cancel_booking",
            booking_id=booking.id,
            cancelled_by=actor.user_id,
            refunded=str(booking.refund_amount),
        )
        return booking

    @BaseService.measure_operation("expire_booking")
    def expire_booking(self, booking_id: str, *, now: Optional[datetime] = None) -> bool:
        """Expire an approved booking left unpaid past its start; no-op otherwise."""
        now = now or datetime.now(timezone.utc)
        with self.transaction():
            booking = self._lock_booking(booking_id)
            if (
                booking.status != BookingStatus.APPROVED
                or booking.is_paid
                or booking.start_time > now
            ):
                return False
            transition_booking(booking, BookingStatus.EXPIRED, now=now)
            self._close_open_orders(booking.id, PaymentOrderStatus.EXPIRED, "Booking expired")
        return True

    def expire_unpaid_bookings(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = 0
        for candidate in self.booking_repository.find_unpaid_started(now):
            if self.expire_booking(candidate.id, now=now):
                expired += 1
        if expired:
            self.log_operation("expire_unpaid_bookings", expired=expired)
        return expired

    # ------------------------------------------------------------------
    # Trip start, return and settlement
    # ------------------------------------------------------------------

    def start_trip(self, booking: Booking, car: Car, now: datetime) -> bool:
        """
        Move a locked, paid booking to in_progress and mark the car rented.

        Returns False (leaving the booking approved) while the car is still
        out on an earlier trip.
        """
        other_trips = [
            b for b in self.booking_repository.find_active_for_car(car.id) if b.id != booking.id
        ]
        if other_trips:
            self.logger.info(
                "Booking %s not started: car %s still on trip %s",
                booking.id,
                car.id,
                other_trips[0].id,
            )
            return False
        transition_booking(booking, BookingStatus.IN_PROGRESS, now=now)
        car.status = CarStatus.RENTED
        return True

    def _refund_early_return(self, booking: Booking, now: datetime) -> None:
        early = self.pricing_service.early_return_refund(
            booking.start_time, booking.end_time, now, booking.total_amount
        )
        if not early.applies:
            return
        self.ledger_service.refund_funds(
            booking_id=booking.id,
            renter_id=booking.renter_id,
            amount=early.refund,
            platform_share=early.platform_share,
        )
        booking.refund_amount = early.refund
        booking.refund_date = now
        booking.is_refund = True
        self.logger.info(
            "Booking %s returned early after %s of %s days, refunded %s",
            booking.id,
            early.used_days.quantize(Decimal("0.01")),
            early.booked_days,
            early.refund,
            extra={"booking_id": booking.id, "amount": str(early.refund)},
        )

    def settle(self, booking: Booking, car: Car, now: datetime) -> None:
        """Release escrow to the owner and complete the booking."""
        self.ledger_service.release_funds(booking.id)
        transition_booking(booking, BookingStatus.COMPLETED, now=now)
        if car.status == CarStatus.RENTED:
            car.status = CarStatus.AVAILABLE
        self.logger.info(
            "Booking %s settled", booking.id, extra={"booking_id": booking.id}
        )

    @BaseService.measure_operation("start_booking")
    def start_booking(
        self,
        booking_id: str,
        actor: Optional[CurrentUser] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = now or datetime.now(timezone.utc)
        with self.transaction():
            booking = self._lock_booking(booking_id)
            car = self._lock_car(booking.car_id)
            if actor is not None:
                ensure_booking_party(actor, booking, car, action="start this trip")
            BOOKING_STATE_MACHINE.ensure(
                BookingStatus(booking.status), BookingStatus.IN_PROGRESS, entity_id=booking.id
            )
            if not booking.is_paid:
                raise BusinessRuleException(
                    "Booking must be paid before the trip starts",
                    code="PAYMENT_REQUIRED",
                    details={"booking_id": booking.id},
                )
            if booking.start_time > now:
                raise BusinessRuleException(
                    "Trip cannot start before the booked start time",
                    code="TRIP_NOT_STARTED",
                    details={"start_time": booking.start_time.isoformat()},
                )
            if not self.start_trip(booking, car, now):
                raise ConflictException(
                    "The car has not been returned from its previous trip",
                    code="CAR_STILL_RENTED",
                    details={"car_id": car.id},
                )
        return booking

    def start_due_bookings(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        started = 0
        for candidate in self.booking_repository.find_paid_due_to_start(now):
            with self.transaction():
                booking = self._lock_booking(candidate.id)
                if (
                    booking.status != BookingStatus.APPROVED
                    or not booking.is_paid
                    or booking.start_time > now
                ):
                    continue
                car = self._lock_car(booking.car_id)
                if self.start_trip(booking, car, now):
                    started += 1
        if started:
            self.log_operation("start_due_bookings", started=started)
        return started

    @BaseService.measure_operation("return_car")
    def return_car(
        self, actor: CurrentUser, booking_id: str, *, now: Optional[datetime] = None
    ) -> Booking:
        """
        Record the car's return.

        Without a late fee the booking settles immediately, after the
        early-return refund when one is owed. With a late fee, the total
        grows by the fee and the booking waits in_progress for the
        ``excess_fee`` payment, which settles it.
        """
        now = now or datetime.now(timezone.utc)
        with self.transaction():
            booking = self._lock_booking(booking_id)
            car = self._lock_car(booking.car_id)
            ensure_booking_party(actor, booking, car, action="return this car", allow_staff=False)
            if booking.status != BookingStatus.IN_PROGRESS:
                raise InvalidStateTransitionException(
                    "booking", booking.status, BookingStatus.COMPLETED, entity_id=booking.id
                )
            if booking.is_car_returned:
                raise ConflictException(
                    "Car has already been returned",
                    code="ALREADY_RETURNED",
                    details={"booking_id": booking.id},
                )

            booking.is_car_returned = True
            booking.actual_return_time = now
            if booking.pending_extension_end_time is not None and not booking.is_extension_paid:
                self._close_open_orders(
                    booking.id,
                    PaymentOrderStatus.CANCELLED,
                    "Car returned before extension was paid",
                    PaymentPurpose.EXTENSION,
                )
                booking.pending_extension_end_time = None
                booking.extension_amount = Decimal("0")
                booking.is_extension_paid = True

            quote = self.pricing_service.excess_fee(car.price_per_hour, booking.end_time, now)
            booking.excess_days = quote.excess_days
            booking.excess_day_fee = quote.fee
            if quote.is_late:
                booking.total_amount = Decimal(booking.total_amount) + quote.fee
                booking.is_excess_fee_paid = False
            else:
                self._refund_early_return(booking, now)
                self.settle(booking, car, now)

        self.log_operation(
            "return_car",
            booking_id=booking.id,
            excess_days=quote.excess_days,
            excess_fee=str(quote.fee),
        )
        return booking

    @BaseService.measure_operation("cancel_bookings_blocked_by_overdue")
    def cancel_bookings_blocked_by_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Cancel and refund approved bookings that an overdue trip will block.

        Covers every approved booking of the same car starting between the
        overdue trip's end and ``now + overdue_pre_cancellation_hours``.
        """
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(hours=settings.overdue_pre_cancellation_hours)
        cancelled = 0
        for overdue in self.booking_repository.find_overdue_in_progress(now):
            blocked = self.booking_repository.find_approved_starting_between(
                overdue.car_id, overdue.end_time, horizon
            )
            for candidate in blocked:
                with self.transaction():
                    booking = self._lock_booking(candidate.id)
                    if booking.status != BookingStatus.APPROVED:
                        continue
                    self._cancel_locked(
                        booking,
                        reason=OVERDUE_CANCELLATION_REASON,
                        cancelled_by_id=None,
                        now=now,
                    )
                    cancelled += 1
        if cancelled:
            self.log_operation("cancel_bookings_blocked_by_overdue", cancelled=cancelled)
        return cancelled

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @BaseService.measure_operation("get_booking_detail")
    def get_booking_detail(self, actor: CurrentUser, booking_id: str) -> BookingDetail:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        car = self.car_repository.get_by_id(booking.car_id, include_deleted=True)
        ensure_booking_party(actor, booking, car, action="view this booking")
        renter = self.user_repository.get_by_id(booking.renter_id, include_deleted=True)
        return BookingDetail(
            booking=booking,
            car=car,
            license_plate=car.license_plate,
            renter_phone=renter.phone if renter else None,
            payment_orders=self.payment_order_repository.list_for_booking(booking.id),
        )

    def list_bookings(
        self,
        actor: CurrentUser,
        status: Optional[BookingStatus] = None,
        *,
        as_owner: bool = False,
    ) -> List[Booking]:
        if as_owner:
            return self.booking_repository.list_for_owner(actor.user_id, status)
        if actor.is_staff:
            return self.booking_repository.list_all(status)
        return self.booking_repository.list_for_renter(actor.user_id, status)
