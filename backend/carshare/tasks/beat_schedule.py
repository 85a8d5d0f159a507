# backend/carshare/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking and payment sweeps.

Every sweep is idempotent: each item is re-checked under its row lock, so
overlapping or repeated runs are harmless.
"""

from typing import Any, Dict

from celery.schedules import crontab

_TASK_PREFIX = "carshare.tasks.booking_tasks"

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "expire-unpaid-bookings": {
        "task": f"{_TASK_PREFIX}.expire_unpaid_bookings",
        "schedule": crontab(minute="*/5"),
        "options": {"queue": "payments"},
    },
    "start-due-bookings": {
        "task": f"{_TASK_PREFIX}.start_due_bookings",
        "schedule": crontab(minute="*/5"),
        "options": {"queue": "payments"},
    },
    "cancel-bookings-blocked-by-overdue": {
        "task": f"{_TASK_PREFIX}.cancel_bookings_blocked_by_overdue",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "payments"},
    },
    "reconcile-pending-payment-orders": {
        "task": f"{_TASK_PREFIX}.reconcile_pending_payment_orders",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "payments"},
    },
    "enforce-compensation-deadlines": {
        "task": f"{_TASK_PREFIX}.enforce_compensation_deadlines",
        "schedule": crontab(minute=0),
        "options": {"queue": "payments"},
    },
}


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return dict(CELERYBEAT_SCHEDULE)
