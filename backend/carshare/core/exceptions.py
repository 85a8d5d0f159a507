# backend/carshare/core/exceptions.py
"""
Domain-specific exceptions for the carshare platform.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def _as_http(self, status_code: int) -> HTTPException:
        return HTTPException(
            status_code=status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )

    def to_http_exception(self) -> HTTPException:
        """Default conversion to HTTPException (override in subclasses)."""
        return self._as_http(status.HTTP_500_INTERNAL_SERVER_ERROR)


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return self._as_http(status.HTTP_400_BAD_REQUEST)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found (or soft-deleted)."""

    def to_http_exception(self) -> HTTPException:
        return self._as_http(status.HTTP_404_NOT_FOUND)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    def to_http_exception(self) -> HTTPException:
        return self._as_http(status.HTTP_409_CONFLICT)


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return self._as_http(HTTP_422_UNPROCESSABLE)


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    def to_http_exception(self) -> HTTPException:
        return self._as_http(status.HTTP_401_UNAUTHORIZED)


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    def to_http_exception(self) -> HTTPException:
        return self._as_http(status.HTTP_403_FORBIDDEN)


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class GatewayException(DomainException):
    """Raised when the payment provider is unreachable or returns a failure."""

    def __init__(
        self,
        message: str = "Payment gateway request failed",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="GATEWAY_ERROR", details=details or {})

    def to_http_exception(self) -> HTTPException:
        return self._as_http(status.HTTP_502_BAD_GATEWAY)


# Specific business exceptions


class InvalidStateTransitionException(ConflictException):
    """Raised when an entity is not in the source state a transition requires."""

    def __init__(
        self,
        entity: str,
        current: Any,
        target: Any,
        *,
        entity_id: Optional[str] = None,
    ):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message=f"Cannot move {entity} from {current_value} to {target_value}",
            code="INVALID_STATE_TRANSITION",
            details={
                "entity": entity,
                "entity_id": entity_id,
                "current_status": current_value,
                "target_status": target_value,
            },
        )


class InsufficientFundsException(BusinessRuleException):
    """Raised when a debit would drive a balance bucket negative."""

    def __init__(self, user_id: str, account: str, available: Decimal, requested: Decimal):
        super().__init__(
            message=f"Insufficient {account} funds: requested {requested}, available {available}",
            code="INSUFFICIENT_FUNDS",
            details={
                "user_id": user_id,
                "account": account,
                "available": str(available),
                "requested": str(requested),
            },
        )


class BookingConflictException(ConflictException):
    """Raised when a booking window conflicts with the car's availability."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "The car is not available for the requested window",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class UnavailableDateConflictException(ConflictException):
    """Raised when a date cannot be blocked because an active booking covers it."""

    def __init__(self, conflict_date: date, booking_id: str):
        super().__init__(
            message=f"Car already has an active booking on {conflict_date.isoformat()}",
            code="AVAILABILITY_CONFLICT",
            details={"date": conflict_date.isoformat(), "booking_id": booking_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
