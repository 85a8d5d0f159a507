"""Car availability schemas."""

from datetime import date
from typing import List, Optional

from pydantic import AwareDatetime, Field, field_validator

from ._strict_base import StrictModel, StrictRequestModel


class AvailabilityResponse(StrictModel):
    car_id: str
    start: AwareDatetime
    end: AwareDatetime
    available: bool
    reason: Optional[str] = None
    blocked_dates: List[date] = Field(default_factory=list)
    conflicting_booking_ids: List[str] = Field(default_factory=list)


class UnavailabilityUpdate(StrictRequestModel):
    """Owner override for whole UTC dates."""

    dates: List[date] = Field(..., min_length=1, max_length=366)
    is_available: bool = False

    @field_validator("dates")
    @classmethod
    def _dedupe(cls, value: List[date]) -> List[date]:
        return sorted(set(value))


class UnavailableDatesResponse(StrictModel):
    car_id: str
    dates: List[date]
