from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.clock import ClockPort
from cancellation_engine.application.utils.money import HUNDRED, ZERO, round_currency
from cancellation_engine.domain.entities.booking import BookingStatus

NOT_SPECIFIED = "Not specified"


@dataclass(frozen=True)
class CancellationStatistics:
    provider_id: str
    total_bookings: int
    total_cancellations: int
    cancelled: int
    no_shows: int
    cancellation_rate: Decimal
    total_penalties_collected: Decimal
    total_refunds_issued: Decimal
    average_penalty: Decimal
    recent_cancellations: int
    reason_breakdown: dict[str, int] = field(default_factory=dict)


class CancellationStatisticsUseCase:
    def __init__(
        self,
        bookings: BookingStorePort,
        clock: ClockPort,
        recent_window_days: int = 30,
        minor_units: int = 2,
    ) -> None:
        self._bookings = bookings
        self._clock = clock
        self._recent_window = timedelta(days=recent_window_days)
        self._minor_units = minor_units

    def execute(self, provider_id: str) -> CancellationStatistics:
        bookings = self._bookings.list_by_provider(provider_id)
        cancelled = [b for b in bookings if b.status == BookingStatus.cancelled]
        no_shows = [b for b in bookings if b.status == BookingStatus.no_show]
        finalized = [b for b in cancelled + no_shows if b.cancellation is not None]

        total_cancellations = len(cancelled) + len(no_shows)
        penalties = sum((b.cancellation.penalty for b in finalized), ZERO)
        refunds = sum((b.cancellation.refund for b in finalized), ZERO)

        rate = ZERO
        if bookings:
            rate = Decimal(total_cancellations) * HUNDRED / Decimal(len(bookings))

        average = ZERO
        if total_cancellations:
            average = penalties / Decimal(total_cancellations)

        recent_cutoff = self._clock.now() - self._recent_window
        recent = sum(
            1
            for b in cancelled
            if b.cancellation is not None and b.cancellation.occurred_at >= recent_cutoff
        )
        reasons = Counter(
            (b.cancellation.client_reason if b.cancellation and b.cancellation.client_reason else NOT_SPECIFIED)
            for b in cancelled
        )

        return CancellationStatistics(
            provider_id=provider_id,
            total_bookings=len(bookings),
            total_cancellations=total_cancellations,
            cancelled=len(cancelled),
            no_shows=len(no_shows),
            cancellation_rate=round_currency(rate, 2),
            total_penalties_collected=round_currency(penalties, self._minor_units),
            total_refunds_issued=round_currency(refunds, self._minor_units),
            average_penalty=round_currency(average, self._minor_units),
            recent_cancellations=recent,
            reason_breakdown=dict(reasons),
        )
