# backend/carshare/routes/v1/reports.py
"""
Booking report routes - API v1

Endpoints:
    POST / - A booking party files a report
    GET /{report_id} - View a report (parties and staff)
    POST /{report_id}/compensation - Staff assign compensation to the at-fault party
    POST /{report_id}/compensation-proof - At-fault party submits payment proof
    POST /{report_id}/resolve - Staff resolve, charging any compensation once
    POST /{report_id}/reject - Staff reject the report
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_current_user, get_report_service
from ...core.exceptions import DomainException
from ...core.principal import CurrentUser
from ...schemas.report import (
    CompensationAssign,
    CompensationProof,
    ReportCreate,
    ReportReject,
    ReportResolve,
    ReportResponse,
)
from ...services.report_service import ReportService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reports-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportCreate = Body(...),
    current_user: CurrentUser = Depends(get_current_user),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    try:
        report = await asyncio.to_thread(
            report_service.create_report,
            current_user,
            payload.booking_id,
            payload.title,
            payload.description,
            payload.report_type,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReportResponse.model_validate(report)


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str = Path(..., description="Report ULID", pattern=ULID_PATH_PATTERN),
    current_user: CurrentUser = Depends(get_current_user),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    try:
        report = await asyncio.to_thread(report_service.get_report, current_user, report_id)
    except DomainException as e:
        handle_domain_exception(e)
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/compensation", response_model=ReportResponse)
async def assign_compensation(
    report_id: str = Path(..., description="Report ULID", pattern=ULID_PATH_PATTERN),
    payload: CompensationAssign = Body(...),
    current_user: CurrentUser = Depends(get_current_user),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    """Assign compensation; the report moves under review with a due date."""
    try:
        report = await asyncio.to_thread(
            report_service.assign_compensation,
            current_user,
            report_id,
            payload.at_fault_user_id,
            payload.amount,
            payload.reason,
            payload.claimant_user_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/compensation-proof", response_model=ReportResponse)
async def submit_compensation_proof(
    report_id: str = Path(..., description="Report ULID", pattern=ULID_PATH_PATTERN),
    payload: CompensationProof = Body(...),
    current_user: CurrentUser = Depends(get_current_user),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    try:
        report = await asyncio.to_thread(
            report_service.submit_compensation_proof, current_user, report_id, payload.image_url
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/resolve", response_model=ReportResponse)
async def resolve_report(
    report_id: str = Path(..., description="Report ULID", pattern=ULID_PATH_PATTERN),
    payload: Optional[ReportResolve] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    """
    Resolve the report.

    Unpaid compensation is charged through the ledger in the same
    transaction. If the at-fault balance cannot cover it, nothing changes
    and 422 INSUFFICIENT_FUNDS is returned.
    """
    payload = payload or ReportResolve()
    try:
        report = await asyncio.to_thread(
            report_service.resolve_report,
            current_user,
            report_id,
            payload.comments,
            compensation_amount=payload.compensation_amount,
            at_fault_user_id=payload.at_fault_user_id,
            claimant_user_id=payload.claimant_user_id,
            compensation_reason=payload.compensation_reason,
            settle_externally=payload.settle_externally,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/reject", response_model=ReportResponse)
async def reject_report(
    report_id: str = Path(..., description="Report ULID", pattern=ULID_PATH_PATTERN),
    payload: Optional[ReportReject] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    try:
        report = await asyncio.to_thread(
            report_service.reject_report,
            current_user,
            report_id,
            payload.comments if payload else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReportResponse.model_validate(report)
