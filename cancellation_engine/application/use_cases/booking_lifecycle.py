from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable

from cancellation_engine.application.exceptions import (
    AlreadyFinalized,
    BookingNotFound,
    CancellationWindowClosed,
    ConcurrentModification,
    InvalidStateTransition,
    NoShowDisabled,
    NoShowNotDue,
    RescheduleNotAllowed,
)
from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.clock import ClockPort
from cancellation_engine.application.ports.policy_store import PolicyStorePort
from cancellation_engine.application.ports.refund_gateway import RefundGatewayPort
from cancellation_engine.application.utils.cancellation_rules import (
    check_reschedule,
    evaluate,
    evaluate_no_show,
    no_show_due_at,
)
from cancellation_engine.domain.entities.booking import (
    Booking,
    BookingStatus,
    CancellationRecord,
    RecordKind,
)
from cancellation_engine.domain.entities.cancellation_outcome import (
    CancellationOutcome,
    RescheduleEligibility,
)


@dataclass(frozen=True)
class _Decision:
    """Result of one read-evaluate step. `updated` is None when nothing needs writing."""

    updated: Booking | None
    outcome: CancellationOutcome | None = None


class BookingStateMachine:
    """
    Owns booking lifecycle transitions.

    Every write is a compare-and-swap on `Booking.version`; a lost race re-runs the
    whole read-evaluate-write step. Evaluation is pure, so repeating it is safe.
    """

    def __init__(
        self,
        bookings: BookingStorePort,
        policies: PolicyStorePort,
        clock: ClockPort,
        refund_gateway: RefundGatewayPort,
        max_attempts: int = 3,
        minor_units: int = 2,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._bookings = bookings
        self._policies = policies
        self._clock = clock
        self._refund_gateway = refund_gateway
        self._max_attempts = max_attempts
        self._minor_units = minor_units
        self._logger = logging.getLogger(__name__)

    def preview(self, booking_id: str, reason: str | None = None) -> CancellationOutcome:
        booking = self._load(booking_id)
        if booking.status.is_terminal:
            if booking.cancellation is None:
                raise AlreadyFinalized(booking.id, booking.status, "preview", None)
            # Report what was recorded; a finalized booking cannot be cancelled again.
            return replace(CancellationOutcome.from_record(booking.cancellation), can_cancel=False)
        policy = self._policies.get(booking.provider_id)
        return evaluate(policy, booking, self._clock.now(), reason=reason, minor_units=self._minor_units)

    def cancel(self, booking_id: str, reason: str | None = None) -> CancellationOutcome:
        committed = False

        def step(booking: Booking) -> _Decision:
            nonlocal committed
            if booking.status == BookingStatus.cancelled and booking.cancellation is not None:
                # Idempotent replay: never recompute against a later clock.
                committed = False
                return _Decision(updated=None, outcome=CancellationOutcome.from_record(booking.cancellation))
            self._require_upcoming(booking, "cancel")

            now = self._clock.now()
            policy = self._policies.get(booking.provider_id)
            outcome = evaluate(policy, booking, now, reason=reason, minor_units=self._minor_units)
            if not outcome.can_cancel:
                raise CancellationWindowClosed(booking.id, booking.status, outcome)

            record = CancellationRecord(
                kind=RecordKind.cancellation,
                rule_matched=outcome.rule,
                penalty=outcome.penalty,
                refund=outcome.refund,
                reason=outcome.message,
                occurred_at=now,
                client_reason=reason,
            )
            committed = True
            return _Decision(
                updated=self._advance(booking, now, status=BookingStatus.cancelled, cancellation=record),
                outcome=outcome,
            )

        decision = self._run(booking_id, "cancel", step)
        if not committed:
            self._logger.info("Cancellation replayed from stored record", extra={"booking_id": booking_id})
            return decision.outcome

        record = decision.updated.cancellation
        self._logger.info(
            "Booking cancelled",
            extra={
                "booking_id": booking_id,
                "rule": record.rule_matched,
                "penalty": str(record.penalty),
                "refund": str(record.refund),
                "version": decision.updated.version,
            },
        )
        self._issue_refund(booking_id, record.refund)
        return CancellationOutcome.from_record(record)

    def mark_no_show(self, booking_id: str) -> CancellationOutcome:
        def step(booking: Booking) -> _Decision:
            self._require_upcoming(booking, "mark_no_show")

            now = self._clock.now()
            policy = self._policies.get(booking.provider_id)
            no_show_policy = policy.no_show_policy
            if not no_show_policy.enabled:
                raise NoShowDisabled(f"No-show handling disabled for provider {booking.provider_id}")
            due_at = no_show_due_at(no_show_policy, booking)
            if now < due_at:
                raise NoShowNotDue(f"Booking {booking.id} is not a no-show before {due_at.isoformat()}")

            outcome = evaluate_no_show(no_show_policy, booking, minor_units=self._minor_units)
            record = CancellationRecord(
                kind=RecordKind.no_show,
                rule_matched=outcome.rule,
                penalty=outcome.penalty,
                refund=outcome.refund,
                reason=outcome.message,
                occurred_at=now,
            )
            return _Decision(
                updated=self._advance(booking, now, status=BookingStatus.no_show, cancellation=record),
                outcome=outcome,
            )

        decision = self._run(booking_id, "mark_no_show", step)
        record = decision.updated.cancellation
        self._logger.info(
            "Booking marked as no-show",
            extra={
                "booking_id": booking_id,
                "penalty": str(record.penalty),
                "refund": str(record.refund),
                "version": decision.updated.version,
            },
        )
        self._issue_refund(booking_id, record.refund)
        return decision.outcome

    def reschedule(self, booking_id: str, new_scheduled_at: datetime) -> Booking:
        if new_scheduled_at.tzinfo is None:
            raise ValueError("new_scheduled_at must be timezone-aware")

        def step(booking: Booking) -> _Decision:
            self._require_upcoming(booking, "reschedule")

            now = self._clock.now()
            policy = self._policies.get(booking.provider_id)
            eligibility = check_reschedule(policy, booking, now, new_scheduled_at)
            if not eligibility.allowed:
                raise RescheduleNotAllowed(booking.id, eligibility.condition, eligibility.message)

            return _Decision(
                updated=self._advance(
                    booking,
                    now,
                    status=BookingStatus.upcoming,
                    scheduled_at=new_scheduled_at,
                    reschedule_count=booking.reschedule_count + 1,
                )
            )

        decision = self._run(booking_id, "reschedule", step)
        self._logger.info(
            "Booking rescheduled",
            extra={"booking_id": booking_id, "version": decision.updated.version},
        )
        return decision.updated

    def reschedule_eligibility(self, booking_id: str) -> RescheduleEligibility:
        booking = self._load(booking_id)
        self._require_upcoming(booking, "reschedule")
        policy = self._policies.get(booking.provider_id)
        return check_reschedule(policy, booking, self._clock.now())

    def confirm(self, booking_id: str) -> Booking:
        def step(booking: Booking) -> _Decision:
            if booking.status == BookingStatus.upcoming:
                return _Decision(updated=None)
            self._require_status(booking, BookingStatus.pending, "confirm")
            return _Decision(updated=self._advance(booking, self._clock.now(), status=BookingStatus.upcoming))

        decision = self._run(booking_id, "confirm", step)
        if decision.updated is None:
            return self._load(booking_id)
        self._logger.info("Booking confirmed", extra={"booking_id": booking_id, "version": decision.updated.version})
        return decision.updated

    def complete(self, booking_id: str) -> Booking:
        def step(booking: Booking) -> _Decision:
            self._require_upcoming(booking, "complete")
            return _Decision(updated=self._advance(booking, self._clock.now(), status=BookingStatus.completed))

        decision = self._run(booking_id, "complete", step)
        self._logger.info("Booking completed", extra={"booking_id": booking_id, "version": decision.updated.version})
        return decision.updated

    def _run(self, booking_id: str, operation: str, step: Callable[[Booking], _Decision]) -> _Decision:
        for attempt in range(1, self._max_attempts + 1):
            booking = self._load(booking_id)
            decision = step(booking)
            if decision.updated is None:
                return decision
            if self._bookings.compare_and_swap(decision.updated, expected_version=booking.version):
                return decision
            self._logger.info(
                "Version conflict, retrying",
                extra={"booking_id": booking_id, "reason": operation, "attempt": attempt, "version": booking.version},
            )

        self._logger.warning(
            "Giving up after repeated version conflicts",
            extra={"booking_id": booking_id, "reason": operation, "attempt": self._max_attempts},
        )
        raise ConcurrentModification(booking_id, self._max_attempts)

    def _load(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    def _require_upcoming(self, booking: Booking, operation: str) -> None:
        self._require_status(booking, BookingStatus.upcoming, operation)

    @staticmethod
    def _require_status(booking: Booking, expected: BookingStatus, operation: str) -> None:
        if booking.status == expected:
            return
        if booking.status.is_terminal:
            raise AlreadyFinalized(booking.id, booking.status, operation, booking.cancellation)
        raise InvalidStateTransition(booking.id, booking.status, operation)

    @staticmethod
    def _advance(booking: Booking, now: datetime, status: BookingStatus, **changes) -> Booking:
        if not booking.status.can_transition_to(status):
            raise InvalidStateTransition(booking.id, booking.status, f"move to {status.value}")
        if "cancellation" in changes and booking.cancellation is not None:
            raise InvalidStateTransition(booking.id, booking.status, "overwrite cancellation record")
        return replace(booking, status=status, version=booking.version + 1, updated_at=now, **changes)

    def _issue_refund(self, booking_id: str, amount: Decimal) -> None:
        # Runs only after a winning commit; a failure here never undoes the transition.
        if amount <= 0:
            return
        try:
            receipt = self._refund_gateway.refund(booking_id, amount)
        except Exception as e:
            self._logger.exception(
                "Refund request failed; booking stays finalized",
                extra={"booking_id": booking_id, "refund": str(amount), "reason": str(e)},
            )
            return
        self._logger.info(
            "Refund requested",
            extra={"booking_id": booking_id, "refund": str(amount), "status": receipt.status.value},
        )
