# backend/carshare/tasks/__init__.py
"""
Celery tasks package for the carshare backend.

This allows running celery with: celery -A carshare.tasks worker -Q payments
"""

from .booking_tasks import (
    cancel_bookings_blocked_by_overdue,
    enforce_compensation_deadlines,
    expire_unpaid_bookings,
    reconcile_pending_payment_orders,
    start_due_bookings,
)
from .celery_app import BaseTask, celery_app

__all__ = [
    "celery_app",
    "BaseTask",
    "cancel_bookings_blocked_by_overdue",
    "enforce_compensation_deadlines",
    "expire_unpaid_bookings",
    "reconcile_pending_payment_orders",
    "start_due_bookings",
]
