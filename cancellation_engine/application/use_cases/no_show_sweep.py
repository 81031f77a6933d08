from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from cancellation_engine.application.exceptions import (
    ConcurrentModification,
    InvalidStateTransition,
    NoShowDisabled,
    NoShowNotDue,
    NotFound,
    PolicyConfigurationError,
)
from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.clock import ClockPort
from cancellation_engine.application.use_cases.booking_lifecycle import BookingStateMachine
from cancellation_engine.domain.entities.booking import BookingStatus


@dataclass
class SweepReport:
    scanned: int = 0
    marked: list[str] = field(default_factory=list)
    not_due: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    lost_race: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "marked": len(self.marked),
            "not_due": len(self.not_due),
            "disabled": len(self.disabled),
            "lost_race": len(self.lost_race),
            "failed": len(self.failed),
        }


class NoShowSweeper:
    """
    Periodically marks past-grace bookings as no-shows.

    Always goes through BookingStateMachine.mark_no_show, so a user cancellation
    that commits first simply wins and the booking is skipped.
    """

    def __init__(self, bookings: BookingStorePort, state_machine: BookingStateMachine, clock: ClockPort) -> None:
        self._bookings = bookings
        self._state_machine = state_machine
        self._clock = clock
        self._logger = logging.getLogger(__name__)

    def sweep_once(self) -> SweepReport:
        report = SweepReport()
        # Grace periods are per provider, so scan everything that has started and
        # let mark_no_show decide whether the grace period is over.
        candidates = self._bookings.list_due(BookingStatus.upcoming, scheduled_before=self._clock.now())
        report.scanned = len(candidates)

        for booking in candidates:
            try:
                self._state_machine.mark_no_show(booking.id)
                report.marked.append(booking.id)
            except NoShowNotDue:
                report.not_due.append(booking.id)
            except NoShowDisabled:
                # Left for manual resolution.
                report.disabled.append(booking.id)
            except (InvalidStateTransition, ConcurrentModification) as e:
                report.lost_race.append(booking.id)
                self._logger.info(
                    "No-show skipped, booking changed concurrently",
                    extra={"booking_id": booking.id, "reason": str(e)},
                )
            except (NotFound, PolicyConfigurationError) as e:
                report.failed.append(booking.id)
                self._logger.error(
                    "No-show sweep failed for booking",
                    extra={"booking_id": booking.id, "provider_id": booking.provider_id, "reason": str(e)},
                )

        self._logger.info("No-show sweep finished", extra={"reason": str(report.as_dict())})
        return report

    def run_forever(self, stop_event: threading.Event, interval_seconds: float) -> None:
        self._logger.info("No-show sweeper started", extra={"reason": f"interval={interval_seconds}s"})
        while not stop_event.is_set():
            try:
                self.sweep_once()
            except Exception as e:
                self._logger.exception("No-show sweep crashed", extra={"reason": str(e)})
            stop_event.wait(interval_seconds)
        self._logger.info("No-show sweeper stopped")
