"""Builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from cancellation_engine.domain.entities.booking import Booking, BookingStatus
from cancellation_engine.domain.entities.cancellation_policy import (
    CancellationPolicy,
    CancellationRule,
    NoShowPolicy,
    PenaltyType,
    ReschedulePolicy,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
PROVIDER_ID = "provider-1"


def rule(hours: str, penalty_type: PenaltyType, penalty_amount: str = "0", refund: str = "100") -> CancellationRule:
    return CancellationRule(
        time_before_appointment_hours=Decimal(hours),
        penalty_type=penalty_type,
        penalty_amount=Decimal(penalty_amount),
        refund_percentage=Decimal(refund),
    )


def example_policy(
    provider_id: str = PROVIDER_ID,
    rules: tuple[CancellationRule, ...] | None = None,
    free_window_hours: str = "48",
    no_show_policy: NoShowPolicy | None = None,
    reschedule_policy: ReschedulePolicy | None = None,
    exceptions: tuple = (),
) -> CancellationPolicy:
    """48h free window, 25% fee / 75% refund from 24h, full charge below that."""
    return CancellationPolicy(
        id=f"policy-{provider_id}",
        provider_id=provider_id,
        policy_name="Example policy",
        free_cancellation_window_hours=Decimal(free_window_hours),
        rules=rules
        if rules is not None
        else (
            rule("24", PenaltyType.percentage, "25", "75"),
            rule("0", PenaltyType.full_charge, "0", "0"),
        ),
        no_show_policy=no_show_policy
        or NoShowPolicy(
            enabled=True,
            grace_period_minutes=15,
            penalty_type=PenaltyType.percentage,
            penalty_amount=Decimal("50"),
        ),
        reschedule_policy=reschedule_policy
        or ReschedulePolicy(
            allow_rescheduling=True,
            max_reschedules_per_booking=2,
            min_notice_hours=Decimal("24"),
        ),
        exceptions=exceptions,
    )


def make_booking(
    booking_id: str = "booking-1",
    hours_ahead: float = 30,
    amount: str = "100",
    status: BookingStatus = BookingStatus.upcoming,
    reschedule_count: int = 0,
    provider_id: str = PROVIDER_ID,
    now: datetime = NOW,
) -> Booking:
    return Booking(
        id=booking_id,
        provider_id=provider_id,
        client_id="client-1",
        amount=Decimal(amount),
        scheduled_at=now + timedelta(hours=hours_ahead),
        status=status,
        reschedule_count=reschedule_count,
        created_at=now,
        updated_at=now,
    )
