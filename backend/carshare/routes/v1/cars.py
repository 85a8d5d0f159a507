# backend/carshare/routes/v1/cars.py
"""
Car availability routes - API v1

Endpoints:
    GET /{car_id}/availability - Check a window against status, overrides and bookings
    GET /{car_id}/unavailable-dates - Dates blocked by overrides or active bookings
    PUT /{car_id}/unavailability - Owner blocks or re-opens whole dates
"""

import asyncio
from datetime import date
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.params import Path
from pydantic import AwareDatetime

from ...api.dependencies import get_availability_service, get_current_user
from ...core.exceptions import DomainException
from ...core.principal import CurrentUser
from ...schemas.availability import (
    AvailabilityResponse,
    UnavailabilityUpdate,
    UnavailableDatesResponse,
)
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cars-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/{car_id}/availability", response_model=AvailabilityResponse)
async def check_availability(
    car_id: str = Path(..., description="Car ULID", pattern=ULID_PATH_PATTERN),
    start: AwareDatetime = Query(..., description="Window start (timezone-aware)"),
    end: AwareDatetime = Query(..., description="Window end (timezone-aware)"),
    current_user: CurrentUser = Depends(get_current_user),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    try:
        verdict = await asyncio.to_thread(availability_service.check_window, car_id, start, end)
    except DomainException as e:
        handle_domain_exception(e)

    return AvailabilityResponse(
        car_id=car_id,
        start=start,
        end=end,
        available=verdict.available,
        reason=verdict.reason,
        blocked_dates=list(verdict.blocked_dates),
        conflicting_booking_ids=list(verdict.conflicting_booking_ids),
    )


@router.get("/{car_id}/unavailable-dates", response_model=UnavailableDatesResponse)
async def list_unavailable_dates(
    car_id: str = Path(..., description="Car ULID", pattern=ULID_PATH_PATTERN),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> UnavailableDatesResponse:
    try:
        dates = await asyncio.to_thread(
            availability_service.list_unavailable_dates, car_id, from_date, to_date
        )
    except DomainException as e:
        handle_domain_exception(e)
    return UnavailableDatesResponse(car_id=car_id, dates=dates)


@router.put("/{car_id}/unavailability", response_model=UnavailableDatesResponse)
async def set_unavailability(
    car_id: str = Path(..., description="Car ULID", pattern=ULID_PATH_PATTERN),
    payload: UnavailabilityUpdate = Body(...),
    current_user: CurrentUser = Depends(get_current_user),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> UnavailableDatesResponse:
    """
    Block (or re-open) whole dates for the owner's car.

    Blocking is all-or-nothing: if any date is covered by an approved or
    in-progress booking, nothing is written and 409 is returned. The
    response lists the dates that remain unavailable afterwards.
    """
    try:
        await asyncio.to_thread(
            availability_service.set_unavailability,
            current_user,
            car_id,
            payload.dates,
            payload.is_available,
        )
        dates = await asyncio.to_thread(availability_service.list_unavailable_dates, car_id)
    except DomainException as e:
        handle_domain_exception(e)
    return UnavailableDatesResponse(car_id=car_id, dates=dates)
