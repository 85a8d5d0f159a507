# backend/carshare/domain/state_machines.py
"""
Status transition tables for bookings, reports and withdrawal requests.

Each table is the only definition of which status changes are legal. The
models consult it from a ``@validates("status")`` hook, so any write that
is not an edge here raises ``InvalidStateTransitionException`` before the
session ever sees it. Services call the ``transition_*`` helpers, which
also stamp the lifecycle timestamps and count the transition.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import TYPE_CHECKING, Dict, FrozenSet, Generic, Mapping, Optional, TypeVar

from ..core.enums import BookingStatus, ReportStatus, WithdrawalStatus
from ..core.exceptions import InvalidStateTransitionException
from ..monitoring.prometheus_metrics import prometheus_metrics

if TYPE_CHECKING:
    from ..models.booking import Booking
    from ..models.booking_report import BookingReport
    from ..models.withdrawal import WithdrawalRequest

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """Explicit transition table for one entity type."""

    def __init__(self, entity_name: str, initial: S, transitions: Mapping[S, FrozenSet[S]]):
        self.entity_name = entity_name
        self.initial = initial
        self._transitions: Dict[S, FrozenSet[S]] = dict(transitions)

    def targets(self, current: S) -> FrozenSet[S]:
        return self._transitions.get(current, frozenset())

    def is_terminal(self, state: S) -> bool:
        return not self.targets(state)

    def can_transition(self, current: Optional[S], target: S) -> bool:
        if current is None:
            return target == self.initial
        return target in self.targets(current)

    def ensure(self, current: Optional[S], target: S, *, entity_id: Optional[str] = None) -> None:
        if not self.can_transition(current, target):
            raise InvalidStateTransitionException(
                self.entity_name, current, target, entity_id=entity_id
            )


BOOKING_STATE_MACHINE: StateMachine[BookingStatus] = StateMachine(
    "booking",
    BookingStatus.PENDING,
    {
        BookingStatus.PENDING: frozenset(
            {BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
        ),
        BookingStatus.APPROVED: frozenset(
            {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.EXPIRED}
        ),
        BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
        BookingStatus.REJECTED: frozenset(),
        BookingStatus.CANCELLED: frozenset(),
        BookingStatus.EXPIRED: frozenset(),
        BookingStatus.COMPLETED: frozenset(),
    },
)

REPORT_STATE_MACHINE: StateMachine[ReportStatus] = StateMachine(
    "report",
    ReportStatus.PENDING,
    {
        ReportStatus.PENDING: frozenset(
            {ReportStatus.UNDER_REVIEW, ReportStatus.RESOLVED, ReportStatus.REJECTED}
        ),
        ReportStatus.UNDER_REVIEW: frozenset({ReportStatus.RESOLVED, ReportStatus.REJECTED}),
        ReportStatus.RESOLVED: frozenset(),
        ReportStatus.REJECTED: frozenset(),
    },
)

WITHDRAWAL_STATE_MACHINE: StateMachine[WithdrawalStatus] = StateMachine(
    "withdrawal_request",
    WithdrawalStatus.PENDING,
    {
        WithdrawalStatus.PENDING: frozenset({WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED}),
        WithdrawalStatus.APPROVED: frozenset(
            {WithdrawalStatus.PROCESSED, WithdrawalStatus.REJECTED}
        ),
        WithdrawalStatus.REJECTED: frozenset(),
        WithdrawalStatus.PROCESSED: frozenset(),
    },
)


_BOOKING_TIMESTAMPS = {
    BookingStatus.APPROVED: "approved_at",
    BookingStatus.IN_PROGRESS: "started_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
    BookingStatus.EXPIRED: "expired_at",
    BookingStatus.REJECTED: "rejected_at",
}


def transition_booking(
    booking: "Booking", target: BookingStatus, *, now: Optional[datetime] = None
) -> BookingStatus:
    """Move ``booking`` to ``target``; returns the previous status."""

    previous = BookingStatus(booking.status)
    BOOKING_STATE_MACHINE.ensure(previous, target, entity_id=booking.id)
    booking.status = target
    stamp = _BOOKING_TIMESTAMPS.get(target)
    if stamp:
        setattr(booking, stamp, now or datetime.now(timezone.utc))
    prometheus_metrics.record_booking_transition(previous.value, target.value)
    logger.info(
        "Booking %s: %s -> %s",
        booking.id,
        previous.value,
        target.value,
        extra={"booking_id": booking.id, "from": previous.value, "to": target.value},
    )
    return previous


def transition_report(report: "BookingReport", target: ReportStatus) -> ReportStatus:
    previous = ReportStatus(report.status)
    REPORT_STATE_MACHINE.ensure(previous, target, entity_id=report.id)
    report.status = target
    return previous


def transition_withdrawal(request: "WithdrawalRequest", target: WithdrawalStatus) -> WithdrawalStatus:
    previous = WithdrawalStatus(request.status)
    WITHDRAWAL_STATE_MACHINE.ensure(previous, target, entity_id=request.id)
    request.status = target
    return previous


def guard_status_write(
    machine: StateMachine[S], current: Optional[S], target: S, *, entity_id: Optional[str]
) -> S:
    """Validator body shared by the status columns; same-value writes pass."""

    target = type(machine.initial)(target)
    if current is not None:
        current = type(machine.initial)(current)
        if current == target:
            return target
    machine.ensure(current, target, entity_id=entity_id)
    return target
