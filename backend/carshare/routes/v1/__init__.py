# backend/carshare/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from fastapi import APIRouter

from . import bookings, cars, payments, reports, wallet

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(bookings.router, prefix="/bookings")
api_v1.include_router(cars.router, prefix="/cars")
api_v1.include_router(wallet.router, prefix="/wallet")
api_v1.include_router(reports.router, prefix="/reports")
api_v1.include_router(payments.router, prefix="/payments")

__all__ = [
    "api_v1",
    "bookings",
    "cars",
    "payments",
    "reports",
    "wallet",
]
