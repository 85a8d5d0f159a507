"""Booking reports, compensation charging and the unpaid-compensation ban."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from carshare.core.enums import (
    BookingStatus,
    LedgerAccount,
    ReportStatus,
    ReportType,
    RoleName,
    TransactionType,
)
from carshare.core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    InsufficientFundsException,
    InvalidStateTransitionException,
    ValidationException,
)
from carshare.models.transaction import Transaction
from carshare.services.booking_service import BookingService
from carshare.services.report_service import COMPENSATION_BAN_REASON, ReportService


@pytest.fixture
def owner(make_user):
    return make_user(RoleName.OWNER, balance=Decimal("0"))


@pytest.fixture
def renter(make_user):
    return make_user(RoleName.DRIVER, balance=Decimal("50"))


@pytest.fixture
def staff(make_user, actor):
    return actor(make_user(RoleName.ADMIN))


@pytest.fixture
def completed(make_car, make_booking, owner, renter, window):
    start, end = window(1, 10)
    return make_booking(renter, make_car(owner), start, end, status=BookingStatus.COMPLETED)


@pytest.fixture
def reports(db):
    return ReportService(db)


@pytest.fixture
def report(reports, completed, owner, actor):
    return reports.create_report(
        actor(owner), completed.id, "Dent", "Rear bumper dented on return", ReportType.DAMAGE
    )


class TestCreateReport:
    def test_party_can_report(self, report, owner, completed):
        assert report.status == ReportStatus.PENDING
        assert report.reporter_id == owner.id
        assert report.booking_id == completed.id
        assert report.report_type == ReportType.DAMAGE

    def test_outsider_cannot_report(self, reports, completed, make_user, actor):
        with pytest.raises(ForbiddenException):
            reports.create_report(
                actor(make_user()), completed.id, "Dent", "Not my booking", ReportType.OTHER
            )

    def test_blank_title_is_rejected(self, reports, completed, renter, actor):
        with pytest.raises(ValidationException) as exc_info:
            reports.create_report(actor(renter), completed.id, "  ", "Something", ReportType.OTHER)
        assert exc_info.value.code == "INVALID_TITLE"


def test_insufficient_balance_leaves_report_untouched(db, reports, report, renter, staff, now):
    with pytest.raises(InsufficientFundsException):
        reports.resolve_report(
            staff,
            report.id,
            "Renter at fault",
            compensation_amount=Decimal("200"),
            at_fault_user_id=renter.id,
            now=now,
        )

    assert report.status == ReportStatus.PENDING
    assert report.compensation_amount is None
    assert renter.balance == Decimal("50")
    assert db.query(Transaction).count() == 0


def test_resolve_charges_at_fault_user_to_claimant(db, reports, report, renter, owner, staff, now):
    renter.balance = Decimal("500")
    db.commit()

    resolved = reports.resolve_report(
        staff,
        report.id,
        "Renter at fault",
        compensation_amount=Decimal("200"),
        at_fault_user_id=renter.id,
        claimant_user_id=owner.id,
        now=now,
    )

    assert resolved.status == ReportStatus.RESOLVED
    assert resolved.is_compensation_paid
    assert resolved.resolved_by_id == staff.user_id
    assert renter.balance == Decimal("300.00")
    assert owner.balance == Decimal("200.00")
    txn = db.get(Transaction, resolved.compensation_transaction_id)
    assert txn.type == TransactionType.COMPENSATION_PAYOUT
    assert txn.credit_account == LedgerAccount.AVAILABLE


def test_compensation_without_claimant_goes_to_platform(db, reports, report, renter, staff, now):
    renter.balance = Decimal("500")
    db.commit()

    resolved = reports.resolve_report(
        staff, report.id, compensation_amount=Decimal("120"), at_fault_user_id=renter.id, now=now
    )

    txn = db.get(Transaction, resolved.compensation_transaction_id)
    assert txn.credit_account == LedgerAccount.PLATFORM
    assert txn.to_user_id is None


def test_at_fault_user_must_be_a_party(reports, report, make_user, staff, now):
    with pytest.raises(ValidationException) as exc_info:
        reports.assign_compensation(staff, report.id, make_user().id, Decimal("100"), now=now)
    assert exc_info.value.code == "NOT_A_BOOKING_PARTY"


def test_only_staff_resolve(reports, report, owner, actor):
    with pytest.raises(ForbiddenException):
        reports.resolve_report(actor(owner), report.id, "mine")


class TestAssignedCompensation:
    def test_assign_moves_report_under_review(self, reports, report, renter, staff, now):
        assigned = reports.assign_compensation(
            staff, report.id, renter.id, Decimal("300"), "Bumper repair", now=now
        )
        assert assigned.status == ReportStatus.UNDER_REVIEW
        assert assigned.compensation_amount == Decimal("300.00")
        assert assigned.compensation_due_date == now + timedelta(days=5)
        assert not assigned.is_compensation_paid

    def test_only_at_fault_user_submits_proof(self, reports, report, renter, owner, staff, actor, now):
        reports.assign_compensation(staff, report.id, renter.id, Decimal("300"), now=now)

        with pytest.raises(ForbiddenException):
            reports.submit_compensation_proof(actor(owner), report.id, "https://proofs.example/1.png")

        updated = reports.submit_compensation_proof(
            actor(renter), report.id, "https://proofs.example/1.png"
        )
        assert updated.compensation_proof_url == "https://proofs.example/1.png"

    def test_external_settlement_uses_proof_not_balance(
        self, db, reports, report, renter, staff, actor, now
    ):
        reports.assign_compensation(staff, report.id, renter.id, Decimal("300"), now=now)
        reports.submit_compensation_proof(actor(renter), report.id, "https://proofs.example/2.png")

        resolved = reports.resolve_report(
            staff, report.id, "Paid by transfer", settle_externally=True, now=now
        )

        assert resolved.is_compensation_paid
        assert renter.balance == Decimal("50")
        txn = db.get(Transaction, resolved.compensation_transaction_id)
        assert txn.debit_account == LedgerAccount.EXTERNAL
        assert txn.proof_url == "https://proofs.example/2.png"

        with pytest.raises(BusinessRuleException) as exc_info:
            reports.submit_compensation_proof(actor(renter), report.id, "https://proofs.example/3.png")
        assert exc_info.value.code == "NO_OPEN_COMPENSATION"

    def test_external_settlement_without_proof_is_refused(self, reports, report, renter, staff, now):
        reports.assign_compensation(staff, report.id, renter.id, Decimal("300"), now=now)
        with pytest.raises(ValidationException) as exc_info:
            reports.resolve_report(staff, report.id, settle_externally=True, now=now)
        assert exc_info.value.code == "PROOF_REQUIRED"
        assert report.status == ReportStatus.UNDER_REVIEW

    def test_overdue_compensation_bans_until_paid(
        self, db, reports, report, renter, owner, staff, actor, make_car, window, now
    ):
        reports.assign_compensation(staff, report.id, renter.id, Decimal("300"), now=now)
        later = now + timedelta(days=6)

        assert reports.enforce_compensation_deadlines(later) == 1
        assert reports.enforce_compensation_deadlines(later) == 0
        assert renter.is_banned
        assert renter.banned_reason == COMPENSATION_BAN_REASON

        start, end = window(8, 4)
        with pytest.raises(BusinessRuleException) as exc_info:
            BookingService(db).create_booking(
                actor(renter), make_car(owner, license_plate="30F-999.99").id, start, end, now=later
            )
        assert exc_info.value.code == "USER_BANNED"

        renter.balance = Decimal("1000")
        db.commit()
        reports.resolve_report(staff, report.id, "Paid late", now=later)

        assert not renter.is_banned
        assert renter.banned_reason is None
        assert renter.balance == Decimal("700.00")

    def test_not_yet_due_is_not_enforced(self, reports, report, renter, staff, now):
        reports.assign_compensation(staff, report.id, renter.id, Decimal("300"), now=now)
        assert reports.enforce_compensation_deadlines(now + timedelta(days=4)) == 0
        assert not renter.is_banned


def test_reject_report(reports, report, staff):
    rejected = reports.reject_report(staff, report.id, "No evidence")
    assert rejected.status == ReportStatus.REJECTED
    with pytest.raises(InvalidStateTransitionException):
        reports.reject_report(staff, report.id, "again")
