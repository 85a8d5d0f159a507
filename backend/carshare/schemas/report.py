"""Booking report and compensation schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from ..core.enums import ReportStatus, ReportType
from ..models.booking_report import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH
from .base import MoneyStr, StandardizedModel
from ._strict_base import StrictRequestModel


class ReportCreate(StrictRequestModel):
    booking_id: str = Field(..., min_length=1, max_length=26)
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    report_type: ReportType = ReportType.OTHER

    @field_validator("title", "description")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class CompensationAssign(StrictRequestModel):
    at_fault_user_id: str
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=1000)
    claimant_user_id: Optional[str] = None


class CompensationProof(StrictRequestModel):
    image_url: str = Field(..., min_length=1, max_length=2048)


class ReportResolve(StrictRequestModel):
    comments: Optional[str] = Field(None, max_length=2000)
    compensation_amount: Optional[Decimal] = Field(None, gt=0, max_digits=14, decimal_places=2)
    at_fault_user_id: Optional[str] = None
    claimant_user_id: Optional[str] = None
    compensation_reason: Optional[str] = Field(None, max_length=1000)
    settle_externally: bool = False


class ReportReject(StrictRequestModel):
    comments: Optional[str] = Field(None, max_length=2000)


class ReportResponse(StandardizedModel):
    id: str
    booking_id: str
    reporter_id: str
    title: str
    description: str
    report_type: ReportType
    status: ReportStatus
    at_fault_user_id: Optional[str] = None
    claimant_user_id: Optional[str] = None
    compensation_reason: Optional[str] = None
    compensation_amount: Optional[MoneyStr] = None
    compensation_due_date: Optional[datetime] = None
    is_compensation_paid: bool
    compensation_paid_at: Optional[datetime] = None
    compensation_proof_url: Optional[str] = None
    compensation_transaction_id: Optional[str] = None
    resolution_comments: Optional[str] = None
    resolved_by_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
