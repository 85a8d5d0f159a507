# backend/carshare/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService, PaymentService and
ExtensionService.

Endpoints:
    POST / - Request a booking (honours Idempotency-Key)
    GET / - List bookings (as renter, as owner, or all for staff)
    GET /{booking_id} - Booking details with decrypted plate and renter phone
    POST /{booking_id}/approve - Owner approves; returns the payment link
    POST /{booking_id}/reject - Owner rejects a pending booking
    POST /{booking_id}/cancel - Renter or staff cancels, refunding escrow
    POST /{booking_id}/start - Start a paid booking whose window has begun
    POST /{booking_id}/return - Record the car's return
    POST /{booking_id}/payment-link - (Re)issue the checkout link for what is owed
    POST /{booking_id}/extensions - Request an extension of an ongoing trip
"""

import asyncio
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_booking_service,
    get_current_user,
    get_extension_service,
    get_payment_service,
)
from ...core import idempotency
from ...core.enums import BookingStatus
from ...core.exceptions import DomainException
from ...core.principal import CurrentUser
from ...schemas.booking import (
    BookingApprovalResponse,
    BookingCreate,
    BookingDecision,
    BookingDetailResponse,
    BookingResponse,
    CarSummary,
    ExtensionCreate,
    ExtensionQuoteResponse,
    PaymentLinkCreate,
    PaymentOrderResponse,
)
from ...services.booking_service import BookingService
from ...services.extension_service import ExtensionService
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# Static routes
# ============================================================================


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Request a car for a time window.

    A retried request carrying the same Idempotency-Key returns the booking
    created by the first attempt instead of creating a second one.
    """
    raw_key: Optional[str] = None
    if idempotency_key:
        raw_key = idempotency.build_raw_key(
            "POST", "/api/v1/bookings", current_user.user_id, idempotency_key
        )
        cached = idempotency.get_cached(raw_key)
        if cached is not None:
            return BookingResponse.model_validate(cached)

    try:
        booking = await asyncio.to_thread(
            booking_service.create_booking,
            current_user,
            booking_data.car_id,
            booking_data.start_time,
            booking_data.end_time,
        )
    except DomainException as e:
        handle_domain_exception(e)

    response = BookingResponse.model_validate(booking)
    if raw_key is not None:
        idempotency.set_cached(raw_key, response.model_dump(mode="json"))
    return response


@router.get("", response_model=List[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    as_owner: bool = Query(False, description="List bookings on cars you own"),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[BookingResponse]:
    bookings = await asyncio.to_thread(
        booking_service.list_bookings, current_user, status_filter, as_owner=as_owner
    )
    return [BookingResponse.model_validate(b) for b in bookings]


# ============================================================================
# Dynamic routes (with path parameters)
# ============================================================================


@router.get(
    "/{booking_id}",
    response_model=BookingDetailResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingDetailResponse:
    try:
        detail = await asyncio.to_thread(
            booking_service.get_booking_detail, current_user, booking_id
        )
    except DomainException as e:
        handle_domain_exception(e)

    return BookingDetailResponse(
        booking=BookingResponse.model_validate(detail.booking),
        car=CarSummary.model_validate(detail.car),
        license_plate=detail.license_plate,
        renter_phone=detail.renter_phone,
        payment_orders=[PaymentOrderResponse.model_validate(o) for o in detail.payment_orders],
    )


@router.post("/{booking_id}/approve", response_model=BookingApprovalResponse)
async def approve_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingApprovalResponse:
    """
    Approve a pending booking.

    Overlapping pending requests on the same car are auto-rejected. A
    gateway failure leaves the booking approved and surfaces as 502; the
    renter can fetch a fresh link through /payment-link.
    """
    try:
        result = await asyncio.to_thread(booking_service.approve_booking, current_user, booking_id)
    except DomainException as e:
        handle_domain_exception(e)

    return BookingApprovalResponse(
        booking=BookingResponse.model_validate(result.booking),
        payment_order=PaymentOrderResponse.model_validate(result.payment_order),
    )


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    decision: Optional[BookingDecision] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.reject_booking,
            current_user,
            booking_id,
            decision.reason if decision else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    decision: Optional[BookingDecision] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Cancel a booking; a paid booking is refunded in full from escrow."""
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking,
            current_user,
            booking_id,
            decision.reason if decision else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.start_booking, booking_id, current_user
        )
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/return", response_model=BookingResponse)
async def return_car(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    current_user: CurrentUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Record the return of the car.

    A late return adds the excess-day fee to the total; the booking then
    stays in progress until that fee is paid.
    """
    try:
        booking = await asyncio.to_thread(booking_service.return_car, current_user, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/payment-link", response_model=PaymentOrderResponse)
async def create_payment_link(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payload: Optional[PaymentLinkCreate] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentOrderResponse:
    try:
        order = await asyncio.to_thread(
            payment_service.create_payment_link,
            current_user,
            booking_id,
            payload.purpose if payload else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return PaymentOrderResponse.model_validate(order)


@router.post(
    "/{booking_id}/extensions",
    response_model=ExtensionQuoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_extension(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payload: ExtensionCreate = Body(...),
    current_user: CurrentUser = Depends(get_current_user),
    extension_service: ExtensionService = Depends(get_extension_service),
) -> ExtensionQuoteResponse:
    try:
        quote = await asyncio.to_thread(
            extension_service.request_extension, current_user, booking_id, payload.new_end_time
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ExtensionQuoteResponse.model_validate(quote)
