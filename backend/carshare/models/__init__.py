# backend/carshare/models/__init__.py
"""
SQLAlchemy models for the carshare booking and ledger core.

Importing this package registers every table on ``Base.metadata``.
"""

from .bank_account import BankAccount
from .booking import Booking, BookingLockedBalance
from .booking_report import BookingReport
from .car import Car, CarAvailability
from .payment_order import PaymentOrder
from .transaction import Transaction
from .user import User
from .webhook_event import WebhookEvent
from .withdrawal import WithdrawalRequest

__all__ = [
    "BankAccount",
    "Booking",
    "BookingLockedBalance",
    "BookingReport",
    "Car",
    "CarAvailability",
    "PaymentOrder",
    "Transaction",
    "User",
    "WebhookEvent",
    "WithdrawalRequest",
]
