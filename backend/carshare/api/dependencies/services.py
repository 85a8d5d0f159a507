# backend/carshare/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Tests override
``get_payment_gateway_dep`` to swap in a fake gateway.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations.payos_client import PaymentGateway, get_payment_gateway
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.extension_service import ExtensionService
from ...services.ledger_service import LedgerService
from ...services.payment_service import PaymentService
from ...services.report_service import ReportService
from ...services.webhook_ledger_service import WebhookLedgerService
from ...services.withdrawal_service import WithdrawalService
from .database import get_db

logger = logging.getLogger(__name__)


def get_payment_gateway_dep() -> PaymentGateway:
    return get_payment_gateway()


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway_dep),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> PaymentService:
    return PaymentService(db, gateway=gateway, ledger_service=ledger_service)


def get_booking_service(
    db: Session = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service),
    ledger_service: LedgerService = Depends(get_ledger_service),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> BookingService:
    """
    Get booking service instance with all dependencies.

    The payment service shares the same session and ledger, so approval,
    settlement and confirmation all write through one unit of work.
    """
    return BookingService(
        db,
        payment_service=payment_service,
        ledger_service=ledger_service,
        availability_service=availability_service,
    )


def get_extension_service(
    db: Session = Depends(get_db),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> ExtensionService:
    return ExtensionService(db, availability_service=availability_service)


def get_report_service(
    db: Session = Depends(get_db),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> ReportService:
    return ReportService(db, ledger_service=ledger_service)


def get_withdrawal_service(
    db: Session = Depends(get_db),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> WithdrawalService:
    return WithdrawalService(db, ledger_service=ledger_service)


def get_webhook_ledger_service(db: Session = Depends(get_db)) -> WebhookLedgerService:
    return WebhookLedgerService(db)
