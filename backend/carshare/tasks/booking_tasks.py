# backend/carshare/tasks/booking_tasks.py
"""
Periodic booking and payment sweeps.

Each task opens its own session, delegates to the service sweep and
returns the counts it produced.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult

from ..database import get_db_session
from ..services.booking_service import BookingService
from ..services.payment_service import PaymentService
from ..services.report_service import ReportService
from .celery_app import BaseTask, celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

logger = logging.getLogger(__name__)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, base=BaseTask, **task_kwargs),
    )


def _stamp(result: Dict[str, Any]) -> Dict[str, Any]:
    result["processed_at"] = datetime.now(timezone.utc).isoformat()
    return result


@typed_task(name="carshare.tasks.booking_tasks.expire_unpaid_bookings")
def expire_unpaid_bookings() -> Dict[str, Any]:
    """Expire approved bookings whose start passed without payment."""
    with get_db_session() as db:
        expired = BookingService(db).expire_unpaid_bookings()
    if expired:
        logger.info("Expired %s unpaid bookings", expired)
    return _stamp({"expired": expired})


@typed_task(name="carshare.tasks.booking_tasks.start_due_bookings")
def start_due_bookings() -> Dict[str, Any]:
    """Move paid bookings whose window has begun to in_progress."""
    with get_db_session() as db:
        started = BookingService(db).start_due_bookings()
    return _stamp({"started": started})


@typed_task(name="carshare.tasks.booking_tasks.cancel_bookings_blocked_by_overdue")
def cancel_bookings_blocked_by_overdue() -> Dict[str, Any]:
    with get_db_session() as db:
        cancelled = BookingService(db).cancel_bookings_blocked_by_overdue()
    if cancelled:
        logger.warning("Cancelled %s bookings blocked by overdue returns", cancelled)
    return _stamp({"cancelled": cancelled})


@typed_task(name="carshare.tasks.booking_tasks.reconcile_pending_payment_orders")
def reconcile_pending_payment_orders() -> Dict[str, Any]:
    """Ask the gateway about stale pending orders whose webhook never arrived."""
    with get_db_session() as db:
        counts = PaymentService(db).reconcile_pending_orders()
    return _stamp(dict(counts))


@typed_task(name="carshare.tasks.booking_tasks.enforce_compensation_deadlines")
def enforce_compensation_deadlines() -> Dict[str, Any]:
    with get_db_session() as db:
        banned = ReportService(db).enforce_compensation_deadlines()
    return _stamp({"banned": banned})
