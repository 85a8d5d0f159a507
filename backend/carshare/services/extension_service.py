# backend/carshare/services/extension_service.py
"""Trip extension requests; the end time only moves once the extension is paid."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.authorization import ensure_booking_renter
from ..core.enums import BookingStatus, PaymentOrderStatus, PaymentPurpose
from ..core.exceptions import BookingConflictException, BusinessRuleException, NotFoundException
from ..core.principal import CurrentUser
from ..repositories.factory import RepositoryFactory
from .availability_service import AvailabilityService
from .base import BaseService
from .pricing_service import PricingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtensionQuote:
    booking_id: str
    current_end_time: datetime
    new_end_time: datetime
    additional_amount: Decimal


class ExtensionService(BaseService):
    def __init__(
        self,
        db: Session,
        availability_service: Optional[AvailabilityService] = None,
        pricing_service: Optional[PricingService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.car_repository = RepositoryFactory.create_car_repository(db)
        self.payment_order_repository = RepositoryFactory.create_payment_order_repository(db)
        self.availability_service = availability_service or AvailabilityService(db)
        self.pricing_service = pricing_service or PricingService()

    @BaseService.measure_operation("request_extension")
    def request_extension(
        self,
        actor: CurrentUser,
        booking_id: str,
        new_end_time: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> ExtensionQuote:
        """
        Price an extension of an in-progress trip and mark it awaiting payment.

        A newer request replaces an unpaid earlier one; its open payment
        order is cancelled so a late confirmation for it is rejected.
        """
        if new_end_time.tzinfo is None:
            new_end_time = new_end_time.replace(tzinfo=timezone.utc)

        with self.transaction():
            booking = self.booking_repository.lock(booking_id)
            if booking is None:
                raise NotFoundException(
                    "Booking not found",
                    code="BOOKING_NOT_FOUND",
                    details={"booking_id": booking_id},
                )
            ensure_booking_renter(actor, booking, action="extend this booking")
            if booking.status != BookingStatus.IN_PROGRESS or booking.is_car_returned:
                raise BusinessRuleException(
                    "Only an ongoing trip can be extended",
                    code="EXTENSION_NOT_ALLOWED",
                    details={
                        "booking_id": booking.id,
                        "status": BookingStatus(booking.status).value,
                        "is_car_returned": booking.is_car_returned,
                    },
                )

            car = self.car_repository.lock(booking.car_id, include_deleted=True)
            additional = self.pricing_service.quote_extension(
                car.price_per_hour, booking.end_time, new_end_time
            )
            verdict = self.availability_service.check_window(
                car.id,
                booking.end_time,
                new_end_time,
                car=car,
                exclude_booking_id=booking.id,
                ignore_car_status=True,
            )
            if not verdict.available:
                raise BookingConflictException(
                    "The car is not available for the extended window",
                    details=verdict.as_details(),
                )

            for order in self.payment_order_repository.find_open(
                booking.id, PaymentPurpose.EXTENSION
            ):
                order.status = PaymentOrderStatus.CANCELLED
                order.failure_reason = "Superseded by a newer extension request"

            booking.extension_amount = additional
            booking.pending_extension_end_time = new_end_time
            booking.is_extension_paid = False

        self.log_operation(
            "request_extension",
            booking_id=booking.id,
            new_end_time=new_end_time.isoformat(),
            amount=str(additional),
        )
        return ExtensionQuote(
            booking_id=booking.id,
            current_end_time=booking.end_time,
            new_end_time=new_end_time,
            additional_amount=additional,
        )
