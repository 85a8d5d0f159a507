# backend/carshare/schemas/booking.py
"""
Booking schemas.

Times are timezone-aware datetimes; naive values are rejected at the
boundary so the services only ever see UTC-comparable instants.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AwareDatetime, Field, model_validator

from ..core.enums import BookingStatus, PaymentOrderStatus, PaymentPurpose
from .base import MoneyStr, StandardizedModel
from ._strict_base import StrictModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    """Request a car for ``[start_time, end_time)``."""

    car_id: str = Field(..., min_length=1, max_length=26)
    start_time: AwareDatetime
    end_time: AwareDatetime

    @model_validator(mode="after")
    def _check_window(self) -> "BookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingDecision(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ExtensionCreate(StrictRequestModel):
    new_end_time: AwareDatetime


class PaymentLinkCreate(StrictRequestModel):
    purpose: Optional[PaymentPurpose] = Field(
        None, description="Defaults to whatever the booking currently owes"
    )


class BookingResponse(StandardizedModel):
    id: str
    renter_id: str
    car_id: str
    status: BookingStatus
    start_time: datetime
    end_time: datetime
    actual_return_time: Optional[datetime] = None
    base_price: MoneyStr
    platform_fee: MoneyStr
    excess_days: int
    excess_day_fee: MoneyStr
    total_amount: MoneyStr
    is_paid: bool
    is_car_returned: bool
    is_excess_fee_paid: bool
    payment_order_code: Optional[int] = None
    extension_amount: MoneyStr
    pending_extension_end_time: Optional[datetime] = None
    is_extension_paid: bool
    refund_amount: MoneyStr
    refund_date: Optional[datetime] = None
    is_refund: bool
    approved_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    owner_note: Optional[str] = None
    created_at: datetime


class PaymentOrderResponse(StandardizedModel):
    id: str
    booking_id: str
    order_code: int
    purpose: PaymentPurpose
    amount: MoneyStr
    status: PaymentOrderStatus
    checkout_url: Optional[str] = None
    qr_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class BookingApprovalResponse(StrictModel):
    booking: BookingResponse
    payment_order: PaymentOrderResponse


class CarSummary(StandardizedModel):
    id: str
    owner_id: str
    price_per_hour: MoneyStr
    pickup_address: Optional[str] = None
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None


class BookingDetailResponse(StrictModel):
    booking: BookingResponse
    car: CarSummary
    license_plate: Optional[str] = None
    renter_phone: Optional[str] = None
    payment_orders: List[PaymentOrderResponse] = Field(default_factory=list)


class ExtensionQuoteResponse(StandardizedModel):
    booking_id: str
    current_end_time: datetime
    new_end_time: datetime
    additional_amount: MoneyStr
