# backend/carshare/core/enums.py
"""
Core enums for the carshare platform.

Status enums live here (rather than beside their models) so the state
machines in ``carshare.domain`` and the models can share them without
import cycles. All enums store their lowercase VALUES in the database.
"""

from enum import Enum


class RoleName(str, Enum):
    """Standard user roles."""

    ADMIN = "admin"
    CONSULTANT = "consultant"
    TECHNICIAN = "technician"
    OWNER = "owner"
    DRIVER = "driver"


STAFF_ROLES = frozenset({RoleName.ADMIN, RoleName.CONSULTANT})


class CarStatus(str, Enum):
    AVAILABLE = "available"
    PENDING = "pending"  # listing awaiting inspection
    REJECTED = "rejected"
    INACTIVE = "inactive"
    RENTED = "rented"


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


# Bookings that occupy the car for their window.
BLOCKING_BOOKING_STATUSES = (BookingStatus.APPROVED, BookingStatus.IN_PROGRESS)


class PaymentPurpose(str, Enum):
    BOOKING = "booking"
    EXTENSION = "extension"
    EXCESS_FEE = "excess_fee"


class PaymentOrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REJECTED = "rejected"  # confirmed by gateway but refused by the booking state


OPEN_PAYMENT_ORDER_STATUSES = (PaymentOrderStatus.PENDING,)


class TransactionType(str, Enum):
    BOOKING_PAYMENT = "booking_payment"
    PLATFORM_FEE = "platform_fee"
    PLATFORM_FEE_REFUND = "platform_fee_refund"
    OWNER_PAYOUT = "owner_payout"
    REFUND = "refund"
    WITHDRAWAL_PAYOUT = "withdrawal_payout"
    COMPENSATION_PAYOUT = "compensation_payout"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class LedgerAccount(str, Enum):
    """Balance bucket a ledger amount leaves or enters."""

    AVAILABLE = "available"  # User.balance
    LOCKED = "locked"  # User.locked_balance (escrow)
    EXTERNAL = "external"  # gateway or bank, outside the platform
    PLATFORM = "platform"  # platform revenue


USER_ACCOUNTS = (LedgerAccount.AVAILABLE, LedgerAccount.LOCKED)


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


OPEN_WITHDRAWAL_STATUSES = (WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED)


class ReportStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class ReportType(str, Enum):
    CONFLICT = "conflict"
    ACCIDENT = "accident"
    FINE_NOTICE = "fine_notice"
    DAMAGE = "damage"
    MAINTENANCE_ISSUE = "maintenance_issue"
    OTHER = "other"
