from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class BookingStatus(str, Enum):
    pending = "pending"
    upcoming = "upcoming"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS.get(self, frozenset())


TERMINAL_STATUSES = frozenset(
    {BookingStatus.completed, BookingStatus.cancelled, BookingStatus.no_show}
)

_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.pending: frozenset({BookingStatus.upcoming}),
    # upcoming -> upcoming is the reschedule self-transition
    BookingStatus.upcoming: frozenset(
        {
            BookingStatus.upcoming,
            BookingStatus.completed,
            BookingStatus.cancelled,
            BookingStatus.no_show,
        }
    ),
    BookingStatus.completed: frozenset(),
    BookingStatus.cancelled: frozenset(),
    BookingStatus.no_show: frozenset(),
}


class RecordKind(str, Enum):
    cancellation = "cancellation"
    no_show = "no_show"


@dataclass(frozen=True)
class CancellationRecord:
    kind: RecordKind
    rule_matched: str
    penalty: Decimal
    refund: Decimal
    reason: str
    occurred_at: datetime
    client_reason: str | None = None  # free text supplied with the cancel request


@dataclass(frozen=True)
class Booking:
    id: str
    provider_id: str
    client_id: str
    amount: Decimal
    scheduled_at: datetime
    status: BookingStatus = BookingStatus.pending
    reschedule_count: int = 0
    version: int = 1
    cancellation: CancellationRecord | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
