"""
Authorization guards used by the booking and ledger services.

Each ``ensure_*`` helper answers one capability question for the explicit
``CurrentUser`` and raises ``ForbiddenException`` when the answer is no.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import ForbiddenException
from .principal import CurrentUser

if TYPE_CHECKING:
    from ..models.booking import Booking
    from ..models.car import Car

logger = logging.getLogger(__name__)


def is_car_owner(actor: CurrentUser, car: "Car") -> bool:
    return car.owner_id == actor.user_id


def is_booking_renter(actor: CurrentUser, booking: "Booking") -> bool:
    return booking.renter_id == actor.user_id


def _deny(actor: CurrentUser, action: str) -> ForbiddenException:
    logger.info(
        "Authorization denied",
        extra={"user_id": actor.user_id, "role": actor.role.value, "action": action},
    )
    return ForbiddenException(
        f"You are not allowed to {action}",
        code="FORBIDDEN",
        details={"action": action},
    )


def ensure_staff(actor: CurrentUser, *, action: str) -> None:
    if not actor.is_staff:
        raise _deny(actor, action)


def ensure_car_owner(actor: CurrentUser, car: "Car", *, action: str) -> None:
    if not is_car_owner(actor, car):
        raise _deny(actor, action)


def ensure_booking_renter(
    actor: CurrentUser, booking: "Booking", *, action: str, allow_staff: bool = False
) -> None:
    if is_booking_renter(actor, booking):
        return
    if allow_staff and actor.is_staff:
        return
    raise _deny(actor, action)


def ensure_booking_party(
    actor: CurrentUser,
    booking: "Booking",
    car: "Car",
    *,
    action: str,
    allow_staff: bool = True,
) -> None:
    """Allow the renter, the car owner and (optionally) staff."""

    if is_booking_renter(actor, booking) or is_car_owner(actor, car):
        return
    if allow_staff and actor.is_staff:
        return
    raise _deny(actor, action)
