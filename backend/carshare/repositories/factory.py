# backend/carshare/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .bank_account_repository import BankAccountRepository
    from .booking_repository import BookingRepository, LockedBalanceRepository
    from .car_repository import CarRepository
    from .payment_order_repository import PaymentOrderRepository
    from .report_repository import ReportRepository
    from .transaction_repository import TransactionRepository
    from .user_repository import UserRepository
    from .webhook_event_repository import WebhookEventRepository
    from .withdrawal_repository import WithdrawalRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_car_repository(db: Session) -> "CarRepository":
        from .car_repository import CarRepository

        return CarRepository(db)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for per-date car availability overrides."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_locked_balance_repository(db: Session) -> "LockedBalanceRepository":
        from .booking_repository import LockedBalanceRepository

        return LockedBalanceRepository(db)

    @staticmethod
    def create_payment_order_repository(db: Session) -> "PaymentOrderRepository":
        from .payment_order_repository import PaymentOrderRepository

        return PaymentOrderRepository(db)

    @staticmethod
    def create_transaction_repository(db: Session) -> "TransactionRepository":
        from .transaction_repository import TransactionRepository

        return TransactionRepository(db)

    @staticmethod
    def create_bank_account_repository(db: Session) -> "BankAccountRepository":
        from .bank_account_repository import BankAccountRepository

        return BankAccountRepository(db)

    @staticmethod
    def create_withdrawal_repository(db: Session) -> "WithdrawalRepository":
        from .withdrawal_repository import WithdrawalRepository

        return WithdrawalRepository(db)

    @staticmethod
    def create_report_repository(db: Session) -> "ReportRepository":
        from .report_repository import ReportRepository

        return ReportRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)
