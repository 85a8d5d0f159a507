# backend/carshare/services/report_service.py
"""
Report Service

Booking reports (disputes) and the compensation they can carry. Staff
assign compensation to the at-fault party; resolving the report charges it
through the ledger exactly once. Users who let an assigned compensation run
past its due date are banned until it is paid.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.authorization import ensure_booking_party, ensure_staff
from ..core.config import settings
from ..core.enums import ReportStatus, ReportType
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import CurrentUser
from ..domain.state_machines import REPORT_STATE_MACHINE, transition_report
from ..models.booking import Booking
from ..models.booking_report import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH, BookingReport
from ..models.car import Car
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ledger_service import LedgerService
from .pricing_service import money

logger = logging.getLogger(__name__)

COMPENSATION_BAN_REASON = "Unpaid compensation past its due date"


class ReportService(BaseService):
    def __init__(self, db: Session, ledger_service: Optional[LedgerService] = None):
        super().__init__(db)
        self.report_repository = RepositoryFactory.create_report_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.car_repository = RepositoryFactory.create_car_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.ledger_service = ledger_service or LedgerService(db)

    def _booking_and_car(self, booking_id: str) -> tuple[Booking, Car]:
        booking = self.booking_repository.get_by_id(booking_id, include_deleted=True)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        car = self.car_repository.get_by_id(booking.car_id, include_deleted=True)
        return booking, car

    def _lock_report(self, report_id: str) -> BookingReport:
        report = self.report_repository.lock(report_id)
        if report is None:
            raise NotFoundException(
                "Report not found", code="REPORT_NOT_FOUND", details={"report_id": report_id}
            )
        return report

    @staticmethod
    def _require_party(booking: Booking, car: Car, user_id: str, role: str) -> None:
        if user_id not in (booking.renter_id, car.owner_id):
            raise ValidationException(
                f"The {role} must be the renter or the owner of the booking",
                code="NOT_A_BOOKING_PARTY",
                details={"user_id": user_id, "booking_id": booking.id},
            )

    def _set_compensation(
        self,
        report: BookingReport,
        booking: Booking,
        car: Car,
        *,
        at_fault_user_id: str,
        amount: Decimal,
        reason: Optional[str],
        claimant_user_id: Optional[str],
        now: datetime,
    ) -> None:
        amount = money(Decimal(amount))
        if amount <= 0:
            raise ValidationException(
                "Compensation amount must be positive",
                code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            )
        self._require_party(booking, car, at_fault_user_id, "at-fault user")
        if claimant_user_id is not None:
            self._require_party(booking, car, claimant_user_id, "claimant")
            if claimant_user_id == at_fault_user_id:
                raise ValidationException(
                    "The claimant cannot be the at-fault user", code="INVALID_CLAIMANT"
                )
        report.at_fault_user_id = at_fault_user_id
        report.claimant_user_id = claimant_user_id
        report.compensation_amount = amount
        report.compensation_reason = reason
        report.compensation_due_date = now + timedelta(days=settings.compensation_due_days)

    @BaseService.measure_operation("create_report")
    def create_report(
        self,
        actor: CurrentUser,
        booking_id: str,
        title: str,
        description: str,
        report_type: ReportType,
    ) -> BookingReport:
        title = (title or "").strip()
        description = (description or "").strip()
        if not title or len(title) > TITLE_MAX_LENGTH:
            raise ValidationException(
                f"Title must be 1-{TITLE_MAX_LENGTH} characters", code="INVALID_TITLE"
            )
        if not description or len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationException(
                f"Description must be 1-{DESCRIPTION_MAX_LENGTH} characters",
                code="INVALID_DESCRIPTION",
            )

        with self.transaction():
            booking, car = self._booking_and_car(booking_id)
            ensure_booking_party(actor, booking, car, action="report on this booking")
            report = self.report_repository.create(
                booking_id=booking.id,
                reporter_id=actor.user_id,
                title=title,
                description=description,
                report_type=ReportType(report_type),
                status=ReportStatus.PENDING,
            )

        self.log_operation("create_report", report_id=report.id, booking_id=booking_id)
        return report

    @BaseService.measure_operation("get_report")
    def get_report(self, actor: CurrentUser, report_id: str) -> BookingReport:
        report = self.report_repository.get_by_id(report_id)
        if report is None:
            raise NotFoundException(
                "Report not found", code="REPORT_NOT_FOUND", details={"report_id": report_id}
            )
        booking, car = self._booking_and_car(report.booking_id)
        ensure_booking_party(actor, booking, car, action="view this report")
        return report

    @BaseService.measure_operation("assign_compensation")
    def assign_compensation(
        self,
        staff: CurrentUser,
        report_id: str,
        at_fault_user_id: str,
        amount: Decimal,
        reason: Optional[str] = None,
        claimant_user_id: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> BookingReport:
        """Assign compensation and move the report under review."""
        ensure_staff(staff, action="assign compensation")
        now = now or datetime.now(timezone.utc)
        with self.transaction():
            report = self._lock_report(report_id)
            REPORT_STATE_MACHINE.ensure(
                ReportStatus(report.status), ReportStatus.UNDER_REVIEW, entity_id=report.id
            )
            booking, car = self._booking_and_car(report.booking_id)
            self._set_compensation(
                report,
                booking,
                car,
                at_fault_user_id=at_fault_user_id,
                amount=amount,
                reason=reason,
                claimant_user_id=claimant_user_id,
                now=now,
            )
            transition_report(report, ReportStatus.UNDER_REVIEW)

        self.log_operation(
            "assign_compensation",
            report_id=report.id,
            at_fault_user_id=at_fault_user_id,
            amount=str(report.compensation_amount),
        )
        return report

    @BaseService.measure_operation("submit_compensation_proof")
    def submit_compensation_proof(
        self, actor: CurrentUser, report_id: str, image_url: str
    ) -> BookingReport:
        if not image_url or not image_url.strip():
            raise ValidationException("A proof image URL is required", code="PROOF_REQUIRED")
        with self.transaction():
            report = self._lock_report(report_id)
            if report.at_fault_user_id != actor.user_id:
                raise ForbiddenException(
                    "Only the at-fault user can submit compensation proof",
                    code="FORBIDDEN",
                    details={"report_id": report.id},
                )
            if report.status != ReportStatus.UNDER_REVIEW or report.is_compensation_paid:
                raise BusinessRuleException(
                    "No unpaid compensation is open on this report",
                    code="NO_OPEN_COMPENSATION",
                    details={"report_id": report.id, "status": ReportStatus(report.status).value},
                )
            report.compensation_proof_url = image_url.strip()
        return report

    def _lift_compensation_ban(self, user_id: str, paid_report_id: str, now: datetime) -> None:
        user = self.user_repository.lock_many([user_id]).get(user_id)
        if user is None or not user.is_banned or user.banned_reason != COMPENSATION_BAN_REASON:
            return
        still_overdue = [
            r
            for r in self.report_repository.find_overdue_compensation(now)
            if r.at_fault_user_id == user_id and r.id != paid_report_id
        ]
        if still_overdue:
            return
        user.is_banned = False
        user.banned_reason = None
        user.banned_at = None
        self.logger.info("Compensation ban lifted for user %s", user_id)

    @BaseService.measure_operation("resolve_report")
    def resolve_report(
        self,
        staff: CurrentUser,
        report_id: str,
        comments: Optional[str] = None,
        *,
        compensation_amount: Optional[Decimal] = None,
        at_fault_user_id: Optional[str] = None,
        claimant_user_id: Optional[str] = None,
        compensation_reason: Optional[str] = None,
        settle_externally: bool = False,
        now: Optional[datetime] = None,
    ) -> BookingReport:
        """
        Resolve the report, charging any compensation through the ledger.

        If the at-fault balance cannot cover the charge the whole call rolls
        back: the report keeps its status and no transaction is written.
        """
        ensure_staff(staff, action="resolve reports")
        now = now or datetime.now(timezone.utc)

        with self.transaction():
            report = self._lock_report(report_id)
            REPORT_STATE_MACHINE.ensure(
                ReportStatus(report.status), ReportStatus.RESOLVED, entity_id=report.id
            )
            booking, car = self._booking_and_car(report.booking_id)

            if compensation_amount is not None:
                if report.is_compensation_paid:
                    raise BusinessRuleException(
                        "Compensation on this report is already paid",
                        code="COMPENSATION_ALREADY_PAID",
                    )
                fault_id = at_fault_user_id or report.at_fault_user_id
                if fault_id is None:
                    raise ValidationException(
                        "An at-fault user is required with a compensation amount",
                        code="AT_FAULT_REQUIRED",
                    )
                self._set_compensation(
                    report,
                    booking,
                    car,
                    at_fault_user_id=fault_id,
                    amount=compensation_amount,
                    reason=compensation_reason or report.compensation_reason,
                    claimant_user_id=claimant_user_id or report.claimant_user_id,
                    now=now,
                )

            if report.has_assigned_compensation and not report.is_compensation_paid:
                txn = self.ledger_service.charge_compensation(
                    from_user_id=report.at_fault_user_id,
                    to_user_id=report.claimant_user_id,
                    amount=Decimal(report.compensation_amount),
                    settle_externally=settle_externally,
                    booking_id=report.booking_id,
                    proof_url=report.compensation_proof_url,
                    description=report.compensation_reason or f"Compensation for report {report.id}",
                )
                report.is_compensation_paid = True
                report.compensation_paid_at = now
                report.compensation_transaction_id = txn.id
                self._lift_compensation_ban(report.at_fault_user_id, report.id, now)

            transition_report(report, ReportStatus.RESOLVED)
            report.resolution_comments = comments
            report.resolved_by_id = staff.user_id
            report.resolved_at = now

        self.log_operation(
            "resolve_report",
            report_id=report.id,
            compensation_transaction_id=report.compensation_transaction_id,
        )
        return report

    @BaseService.measure_operation("reject_report")
    def reject_report(
        self,
        staff: CurrentUser,
        report_id: str,
        comments: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> BookingReport:
        ensure_staff(staff, action="reject reports")
        with self.transaction():
            report = self._lock_report(report_id)
            transition_report(report, ReportStatus.REJECTED)
            report.resolution_comments = comments
            report.resolved_by_id = staff.user_id
            report.resolved_at = now or datetime.now(timezone.utc)
        return report

    @BaseService.measure_operation("enforce_compensation_deadlines")
    def enforce_compensation_deadlines(self, now: Optional[datetime] = None) -> int:
        """Ban users with assigned compensation unpaid past its due date."""
        now = now or datetime.now(timezone.utc)
        banned = 0
        for report in self.report_repository.find_overdue_compensation(now):
            with self.transaction():
                user = self.user_repository.lock_many([report.at_fault_user_id]).get(
                    report.at_fault_user_id
                )
                if user is None or user.is_banned:
                    continue
                user.is_banned = True
                user.banned_reason = COMPENSATION_BAN_REASON
                user.banned_at = now
                banned += 1
                self.logger.warning(
                    "User %s banned for overdue compensation on report %s",
                    user.id,
                    report.id,
                    extra={"user_id": user.id, "report_id": report.id},
                )
        return banned
