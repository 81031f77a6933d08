"""
Tests for BookingStateMachine: cancellation, no-show, reschedule and the
version compare-and-swap that orders competing transitions.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from cancellation_engine.application.exceptions import (
    AlreadyFinalized,
    BookingNotFound,
    CancellationWindowClosed,
    ConcurrentModification,
    InvalidStateTransition,
    NoShowDisabled,
    NoShowNotDue,
    PolicyNotFound,
    RescheduleNotAllowed,
)
from cancellation_engine.application.use_cases.booking_lifecycle import BookingStateMachine
from cancellation_engine.domain.entities.booking import BookingStatus, RecordKind
from cancellation_engine.domain.entities.cancellation_outcome import RescheduleCondition
from cancellation_engine.domain.entities.cancellation_policy import (
    NoShowPolicy,
    PenaltyType,
    ReschedulePolicy,
)
from cancellation_engine.infrastructure.clock.mock_clock import MockClock
from cancellation_engine.infrastructure.payments.mock_refund_gateway import MockRefundGateway
from cancellation_engine.infrastructure.store.memory_store import MemoryBookingStore, MemoryPolicyStore

from factories import NOW, PROVIDER_ID, example_policy, make_booking


class ConflictingBookingStore(MemoryBookingStore):
    """Simulates another writer landing just before our first `conflicts` writes."""

    def __init__(self, conflicts: int) -> None:
        super().__init__()
        self.conflicts = conflicts
        self.cas_calls = 0

    def compare_and_swap(self, updated, expected_version):
        self.cas_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            current = self.get(updated.id)
            super().compare_and_swap(replace(current, version=current.version + 1), current.version)
        return super().compare_and_swap(updated, expected_version)


class HookedBookingStore(MemoryBookingStore):
    """Runs `before_first_cas` once, right before the first conditional write."""

    def __init__(self) -> None:
        super().__init__()
        self.before_first_cas = None
        self.successful_writes = 0
        self._count_lock = threading.Lock()

    def compare_and_swap(self, updated, expected_version):
        hook, self.before_first_cas = self.before_first_cas, None
        if hook is not None:
            hook()
        ok = super().compare_and_swap(updated, expected_version)
        if ok:
            with self._count_lock:
                self.successful_writes += 1
        return ok


def test_cancel_commits_record_and_requests_refund(machine, bookings, gateway):
    bookings.add(make_booking(hours_ahead=30))

    outcome = machine.cancel("booking-1", reason="schedule conflict")

    assert outcome.penalty == Decimal("25")
    assert outcome.refund == Decimal("75")
    stored = bookings.get("booking-1")
    assert stored.status == BookingStatus.cancelled
    assert stored.version == 2
    assert stored.cancellation.kind == RecordKind.cancellation
    assert stored.cancellation.client_reason == "schedule conflict"
    assert stored.cancellation.occurred_at == NOW
    assert gateway.refunds == [("booking-1", Decimal("75.00"))]


def test_cancel_is_idempotent_and_never_recomputes(machine, bookings, gateway, clock):
    bookings.add(make_booking(hours_ahead=30))

    first = machine.cancel("booking-1")
    clock.advance(hours=20)  # would now fall into the full-charge tier
    second = machine.cancel("booking-1")

    assert first == second
    assert second.penalty == Decimal("25")
    assert bookings.get("booking-1").version == 2
    assert len(gateway.refunds) == 1


def test_cancel_of_no_show_booking_is_already_finalized(machine, bookings, clock):
    bookings.add(make_booking(hours_ahead=0))
    clock.advance(minutes=16)
    machine.mark_no_show("booking-1")

    with pytest.raises(AlreadyFinalized) as exc:
        machine.cancel("booking-1")

    assert exc.value.status == BookingStatus.no_show
    assert exc.value.record.kind == RecordKind.no_show


def test_cancel_of_pending_booking_is_invalid(machine, bookings):
    bookings.add(make_booking(status=BookingStatus.pending))

    with pytest.raises(InvalidStateTransition) as exc:
        machine.cancel("booking-1")

    assert not isinstance(exc.value, AlreadyFinalized)
    assert bookings.get("booking-1").status == BookingStatus.pending


def test_cancel_after_start_is_rejected_without_writing(machine, bookings, clock):
    bookings.add(make_booking(hours_ahead=1))
    clock.advance(hours=2)

    with pytest.raises(CancellationWindowClosed) as exc:
        machine.cancel("booking-1")

    assert exc.value.outcome.can_cancel is False
    stored = bookings.get("booking-1")
    assert stored.status == BookingStatus.upcoming
    assert stored.version == 1


def test_unknown_booking_and_missing_policy(machine, bookings):
    with pytest.raises(BookingNotFound):
        machine.cancel("missing")

    bookings.add(make_booking(booking_id="orphan", provider_id="no-policy"))
    with pytest.raises(PolicyNotFound):
        machine.preview("orphan")


def test_preview_does_not_write(machine, bookings, gateway):
    bookings.add(make_booking(hours_ahead=2))

    outcome = machine.preview("booking-1")

    assert outcome.penalty == Decimal("100")
    assert bookings.get("booking-1").version == 1
    assert gateway.refunds == []


def test_preview_of_finalized_booking_reports_the_recorded_outcome(machine, bookings, clock):
    bookings.add(make_booking(hours_ahead=30))
    machine.cancel("booking-1", reason="illness")
    clock.advance(hours=29)

    outcome = machine.preview("booking-1")

    assert outcome.can_cancel is False
    assert outcome.penalty == Decimal("25.00")
    assert outcome.refund == Decimal("75.00")
    assert outcome.rule == ">= 24h before appointment"

    bookings.add(make_booking(booking_id="done", hours_ahead=0))
    machine.complete("done")
    with pytest.raises(AlreadyFinalized):
        machine.preview("done")


def test_zero_refund_skips_gateway(machine, bookings, gateway):
    bookings.add(make_booking(hours_ahead=2))

    outcome = machine.cancel("booking-1")

    assert outcome.refund == 0
    assert gateway.refunds == []


def test_gateway_failure_keeps_booking_cancelled(bookings, policies, clock):
    machine = BookingStateMachine(bookings, policies, clock, MockRefundGateway(fail=True))
    bookings.add(make_booking(hours_ahead=30))

    outcome = machine.cancel("booking-1")

    assert outcome.refund == Decimal("75")
    assert bookings.get("booking-1").status == BookingStatus.cancelled


def test_refund_is_requested_only_after_commit(bookings, policies, clock):
    seen_statuses = []

    class InspectingGateway(MockRefundGateway):
        def refund(self, booking_id, amount):
            seen_statuses.append(bookings.get(booking_id).status)
            return super().refund(booking_id, amount)

    machine = BookingStateMachine(bookings, policies, clock, InspectingGateway())
    bookings.add(make_booking(hours_ahead=30))
    machine.cancel("booking-1")

    assert seen_statuses == [BookingStatus.cancelled]


def test_lost_version_race_is_retried(policies, clock, gateway):
    store = ConflictingBookingStore(conflicts=1)
    store.add(make_booking(hours_ahead=30))
    machine = BookingStateMachine(store, policies, clock, gateway)

    outcome = machine.cancel("booking-1")

    assert outcome.penalty == Decimal("25")
    assert store.cas_calls == 2
    stored = store.get("booking-1")
    assert stored.status == BookingStatus.cancelled
    assert stored.version == 3


def test_exhausted_retries_raise_concurrent_modification(policies, clock, gateway):
    store = ConflictingBookingStore(conflicts=10)
    store.add(make_booking(hours_ahead=30))
    machine = BookingStateMachine(store, policies, clock, gateway, max_attempts=3)

    with pytest.raises(ConcurrentModification) as exc:
        machine.cancel("booking-1")

    assert exc.value.attempts == 3
    assert store.cas_calls == 3
    assert store.get("booking-1").status == BookingStatus.upcoming
    assert gateway.refunds == []


def test_user_cancel_wins_race_against_sweeper(policies, gateway):
    store = HookedBookingStore()
    store.add(make_booking(hours_ahead=0))
    user = BookingStateMachine(store, policies, MockClock(NOW - timedelta(minutes=1)), gateway)
    sweeper = BookingStateMachine(store, policies, MockClock(NOW + timedelta(minutes=16)), gateway)

    # The user's cancellation lands between the sweeper's read and its write.
    store.before_first_cas = lambda: user.cancel("booking-1")

    with pytest.raises(AlreadyFinalized) as exc:
        sweeper.mark_no_show("booking-1")

    stored = store.get("booking-1")
    assert stored.status == BookingStatus.cancelled
    assert stored.cancellation.kind == RecordKind.cancellation
    assert exc.value.record == stored.cancellation
    assert store.successful_writes == 1
    assert gateway.refunds == []  # late cancellation is a full charge


def test_sweeper_win_blocks_later_cancel(machine, bookings, policies, gateway):
    bookings.add(make_booking(hours_ahead=0))
    sweeper = BookingStateMachine(bookings, policies, MockClock(NOW + timedelta(minutes=16)), gateway)
    sweeper.mark_no_show("booking-1")

    with pytest.raises(AlreadyFinalized):
        machine.cancel("booking-1")
    assert bookings.get("booking-1").status == BookingStatus.no_show


def test_concurrent_cancel_and_no_show_write_exactly_once(policies):
    store = HookedBookingStore()
    store.add(make_booking(hours_ahead=0, amount="80"))
    gateway = MockRefundGateway()
    user = BookingStateMachine(store, policies, MockClock(NOW - timedelta(minutes=1)), gateway)
    sweeper = BookingStateMachine(store, policies, MockClock(NOW + timedelta(minutes=16)), gateway)

    barrier = threading.Barrier(10)
    results = []
    results_lock = threading.Lock()

    def attempt(operation):
        barrier.wait()
        try:
            value = operation("booking-1")
        except (AlreadyFinalized, ConcurrentModification) as e:
            value = e
        with results_lock:
            results.append(value)

    threads = [threading.Thread(target=attempt, args=(user.cancel,)) for _ in range(5)]
    threads += [threading.Thread(target=attempt, args=(sweeper.mark_no_show,)) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stored = store.get("booking-1")
    assert store.successful_writes == 1
    assert stored.version == 2
    assert stored.status in {BookingStatus.cancelled, BookingStatus.no_show}
    successes = [r for r in results if not isinstance(r, Exception)]
    assert successes
    assert all(s == successes[0] for s in successes)
    assert len(gateway.refunds) <= 1


def test_mark_no_show_respects_grace_period(machine, bookings, clock):
    bookings.add(make_booking(hours_ahead=0, amount="80"))

    clock.advance(minutes=10)
    with pytest.raises(NoShowNotDue):
        machine.mark_no_show("booking-1")

    clock.advance(minutes=6)
    outcome = machine.mark_no_show("booking-1")

    assert outcome.penalty == Decimal("40")
    assert outcome.refund == Decimal("40")
    stored = bookings.get("booking-1")
    assert stored.status == BookingStatus.no_show
    assert stored.cancellation.kind == RecordKind.no_show


def test_mark_no_show_disabled_leaves_booking(bookings, clock, gateway):
    policies = MemoryPolicyStore([example_policy(no_show_policy=NoShowPolicy(enabled=False))])
    machine = BookingStateMachine(bookings, policies, clock, gateway)
    bookings.add(make_booking(hours_ahead=0))
    clock.advance(hours=1)

    with pytest.raises(NoShowDisabled):
        machine.mark_no_show("booking-1")
    assert bookings.get("booking-1").status == BookingStatus.upcoming


def test_full_charge_no_show_requests_no_refund(bookings, clock, gateway):
    no_show = NoShowPolicy(enabled=True, grace_period_minutes=0, penalty_type=PenaltyType.full_charge)
    machine = BookingStateMachine(bookings, MemoryPolicyStore([example_policy(no_show_policy=no_show)]), clock, gateway)
    bookings.add(make_booking(hours_ahead=0, amount="80"))

    outcome = machine.mark_no_show("booking-1")

    assert outcome.penalty == Decimal("80")
    assert outcome.refund == 0
    assert gateway.refunds == []


def test_reschedule_moves_appointment(machine, bookings):
    bookings.add(make_booking(hours_ahead=48))
    new_time = NOW + timedelta(days=5)

    booking = machine.reschedule("booking-1", new_time)

    assert booking.scheduled_at == new_time
    assert booking.reschedule_count == 1
    assert booking.version == 2
    assert booking.status == BookingStatus.upcoming
    assert booking.cancellation is None
    assert bookings.get("booking-1") == booking


def test_reschedule_fails_only_on_notice(machine, bookings):
    bookings.add(make_booking(hours_ahead=10))

    with pytest.raises(RescheduleNotAllowed) as exc:
        machine.reschedule("booking-1", NOW + timedelta(days=5))

    assert exc.value.condition == RescheduleCondition.insufficient_notice


def test_reschedule_fails_only_on_count(machine, bookings):
    bookings.add(make_booking(hours_ahead=48, reschedule_count=2))

    with pytest.raises(RescheduleNotAllowed) as exc:
        machine.reschedule("booking-1", NOW + timedelta(days=5))

    assert exc.value.condition == RescheduleCondition.count_exceeded


def test_reschedule_fails_only_when_disabled(bookings, clock, gateway):
    policies = MemoryPolicyStore([example_policy(reschedule_policy=ReschedulePolicy(allow_rescheduling=False))])
    machine = BookingStateMachine(bookings, policies, clock, gateway)
    bookings.add(make_booking(hours_ahead=48))

    with pytest.raises(RescheduleNotAllowed) as exc:
        machine.reschedule("booking-1", NOW + timedelta(days=5))

    assert exc.value.condition == RescheduleCondition.disabled
    assert bookings.get("booking-1").version == 1


def test_reschedule_into_the_past_is_rejected(machine, bookings):
    bookings.add(make_booking(hours_ahead=48))

    with pytest.raises(RescheduleNotAllowed) as exc:
        machine.reschedule("booking-1", NOW - timedelta(hours=1))

    assert exc.value.condition == RescheduleCondition.invalid_new_time


def test_reschedule_of_cancelled_booking_is_already_finalized(machine, bookings):
    bookings.add(make_booking(hours_ahead=72))
    machine.cancel("booking-1")

    with pytest.raises(AlreadyFinalized):
        machine.reschedule("booking-1", NOW + timedelta(days=5))


def test_confirm_and_complete_lifecycle(machine, bookings):
    bookings.add(make_booking(status=BookingStatus.pending))

    confirmed = machine.confirm("booking-1")
    assert confirmed.status == BookingStatus.upcoming
    assert machine.confirm("booking-1").version == confirmed.version

    completed = machine.complete("booking-1")
    assert completed.status == BookingStatus.completed
    assert completed.version == 3

    with pytest.raises(AlreadyFinalized):
        machine.cancel("booking-1")
    with pytest.raises(AlreadyFinalized):
        machine.confirm("booking-1")


def test_other_provider_policies_are_isolated(bookings, clock, gateway):
    lenient = example_policy(provider_id="lenient", free_window_hours="1")
    machine = BookingStateMachine(bookings, MemoryPolicyStore([example_policy(), lenient]), clock, gateway)
    bookings.add(make_booking(booking_id="a", hours_ahead=2, provider_id=PROVIDER_ID))
    bookings.add(make_booking(booking_id="b", hours_ahead=2, provider_id="lenient"))

    assert machine.preview("a").penalty == Decimal("100")
    assert machine.preview("b").penalty == 0
