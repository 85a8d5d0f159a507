# backend/carshare/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_user
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_extension_service,
    get_ledger_service,
    get_payment_gateway_dep,
    get_payment_service,
    get_report_service,
    get_webhook_ledger_service,
    get_withdrawal_service,
)

__all__ = [
    # Auth
    "get_current_user",
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_booking_service",
    "get_extension_service",
    "get_ledger_service",
    "get_payment_gateway_dep",
    "get_payment_service",
    "get_report_service",
    "get_webhook_ledger_service",
    "get_withdrawal_service",
]
