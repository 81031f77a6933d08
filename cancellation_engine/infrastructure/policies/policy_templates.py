from __future__ import annotations

from decimal import Decimal

from cancellation_engine.domain.entities.cancellation_policy import (
    CancellationPolicy,
    CancellationRule,
    ExceptionReason,
    NoShowPolicy,
    PenaltyType,
    PolicyException,
    ReschedulePolicy,
    RescheduleFeeType,
)

DEFAULT_POLICY_NAME = "Standard Cancellation Policy"


def default_policy(provider_id: str, policy_id: str | None = None) -> CancellationPolicy:
    """Standard template offered to providers: 48h free window, tiered fees after that."""
    return CancellationPolicy(
        id=policy_id or f"default-{provider_id}",
        provider_id=provider_id,
        policy_name=DEFAULT_POLICY_NAME,
        description="Standard cancellation policy with 48-hour free cancellation window",
        free_cancellation_window_hours=Decimal("48"),
        rules=(
            CancellationRule(
                time_before_appointment_hours=Decimal("24"),
                penalty_type=PenaltyType.percentage,
                penalty_amount=Decimal("25"),
                refund_percentage=Decimal("75"),
            ),
            CancellationRule(
                time_before_appointment_hours=Decimal("12"),
                penalty_type=PenaltyType.percentage,
                penalty_amount=Decimal("50"),
                refund_percentage=Decimal("50"),
            ),
            CancellationRule(
                time_before_appointment_hours=Decimal("0"),
                penalty_type=PenaltyType.percentage,
                penalty_amount=Decimal("50"),
                refund_percentage=Decimal("50"),
            ),
        ),
        no_show_policy=NoShowPolicy(
            enabled=True,
            grace_period_minutes=15,
            penalty_type=PenaltyType.full_charge,
            penalty_amount=Decimal("100"),
        ),
        reschedule_policy=ReschedulePolicy(
            allow_rescheduling=True,
            max_reschedules_per_booking=2,
            min_notice_hours=Decimal("24"),
            fee_type=RescheduleFeeType.none,
            fee_amount=Decimal("0"),
        ),
        exceptions=(
            PolicyException(
                reason=ExceptionReason.emergency,
                refund_percentage=Decimal("100"),
                requires_proof=True,
                notes="Medical or family emergency with documentation",
            ),
            PolicyException(
                reason=ExceptionReason.provider_cancellation,
                refund_percentage=Decimal("100"),
                requires_proof=False,
                notes="Provider-initiated cancellation - full refund",
            ),
        ),
    )
