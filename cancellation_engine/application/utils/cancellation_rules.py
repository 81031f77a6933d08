"""
Pure cancellation, no-show and reschedule rule evaluation.

Nothing in here performs I/O or reads the clock; callers pass `now` in.
Intermediate values are kept at full Decimal precision and rounded once at the end.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from cancellation_engine.application.utils.money import (
    ZERO,
    percent_of,
    round_currency,
)
from cancellation_engine.domain.entities.booking import Booking
from cancellation_engine.domain.entities.cancellation_outcome import (
    CancellationOutcome,
    RescheduleCondition,
    RescheduleEligibility,
)
from cancellation_engine.domain.entities.cancellation_policy import (
    CancellationPolicy,
    CancellationRule,
    NoShowPolicy,
    PenaltyType,
)

FREE_WINDOW_RULE = "free cancellation window"
ELAPSED_MESSAGE = "appointment already elapsed"
NO_SHOW_RULE = "no-show"

_MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)


def hours_until(scheduled_at: datetime, now: datetime) -> Decimal:
    """Exact lead time in hours; negative once the appointment has started."""
    delta = scheduled_at - now
    return Decimal(delta // timedelta(microseconds=1)) / _MICROSECONDS_PER_HOUR


def sorted_rules(rules: tuple[CancellationRule, ...] | list[CancellationRule]) -> list[CancellationRule]:
    # sorted() is stable, so equal thresholds keep their authored order.
    return sorted(rules, key=lambda r: r.time_before_appointment_hours, reverse=True)


def match_rule(rules: tuple[CancellationRule, ...] | list[CancellationRule], lead_hours: Decimal) -> CancellationRule:
    for rule in sorted_rules(rules):
        if rule.time_before_appointment_hours <= lead_hours:
            return rule
    # Unreachable for validated policies: the 0-hour tier matches any lead_hours >= 0.
    raise ValueError(f"No cancellation rule matches {lead_hours} hours")


def penalty_for(penalty_type: PenaltyType, penalty_amount: Decimal, amount: Decimal) -> Decimal:
    if penalty_type == PenaltyType.percentage:
        return percent_of(amount, penalty_amount)
    if penalty_type == PenaltyType.fixed_amount:
        return max(min(penalty_amount, amount), ZERO)
    if penalty_type == PenaltyType.full_charge:
        return amount
    return ZERO


def describe_rule(rule: CancellationRule) -> str:
    if rule.time_before_appointment_hours == 0:
        return "late cancellation"
    return f">= {_format_hours(rule.time_before_appointment_hours)}h before appointment"


def evaluate(
    policy: CancellationPolicy,
    booking: Booking,
    now: datetime,
    *,
    reason: str | None = None,
    minor_units: int = 2,
) -> CancellationOutcome:
    lead_hours = hours_until(booking.scheduled_at, now)
    amount = booking.amount

    if lead_hours < 0:
        return CancellationOutcome(
            can_cancel=False,
            penalty=round_currency(ZERO, minor_units),
            refund=round_currency(ZERO, minor_units),
            rule=ELAPSED_MESSAGE,
            message=ELAPSED_MESSAGE,
            hours_until=lead_hours,
        )

    if lead_hours >= policy.free_cancellation_window_hours:
        return CancellationOutcome(
            can_cancel=True,
            penalty=round_currency(ZERO, minor_units),
            refund=round_currency(amount, minor_units),
            rule=FREE_WINDOW_RULE,
            message=(
                f"Free cancellation: more than {_format_hours(policy.free_cancellation_window_hours)}h "
                "before the appointment"
            ),
            hours_until=lead_hours,
        )

    exception = policy.find_exception(reason)
    if exception is not None:
        refund = min(percent_of(amount, exception.refund_percentage), amount)
        return CancellationOutcome(
            can_cancel=True,
            penalty=round_currency(amount - refund, minor_units),
            refund=round_currency(refund, minor_units),
            rule=f"exception: {exception.reason.value}",
            message=exception.notes or f"Policy exception applied: {exception.reason.value}",
            hours_until=lead_hours,
            requires_proof=exception.requires_proof,
        )

    rule = match_rule(policy.rules, lead_hours)
    penalty = penalty_for(rule.penalty_type, rule.penalty_amount, amount)
    refund = min(percent_of(amount, rule.refund_percentage), amount)

    penalty = round_currency(penalty, minor_units)
    refund = round_currency(refund, minor_units)
    return CancellationOutcome(
        can_cancel=True,
        penalty=penalty,
        refund=refund,
        rule=describe_rule(rule),
        message=_outcome_message(penalty, refund),
        hours_until=lead_hours,
    )


def evaluate_no_show(
    no_show_policy: NoShowPolicy,
    booking: Booking,
    *,
    minor_units: int = 2,
) -> CancellationOutcome:
    """
    Penalty/refund for a client who did not show up.
    Callers must check `no_show_policy.enabled` first; this function does not.
    """
    amount = booking.amount
    penalty = penalty_for(no_show_policy.penalty_type, no_show_policy.penalty_amount, amount)
    if no_show_policy.penalty_type == PenaltyType.full_charge:
        refund = ZERO
    else:
        refund = amount - penalty

    penalty = round_currency(penalty, minor_units)
    refund = round_currency(refund, minor_units)
    return CancellationOutcome(
        can_cancel=False,
        penalty=penalty,
        refund=refund,
        rule=NO_SHOW_RULE,
        message=f"No-show after {no_show_policy.grace_period_minutes} minute grace period",
    )


def no_show_due_at(no_show_policy: NoShowPolicy, booking: Booking) -> datetime:
    return booking.scheduled_at + timedelta(minutes=no_show_policy.grace_period_minutes)


def check_reschedule(
    policy: CancellationPolicy,
    booking: Booking,
    now: datetime,
    new_scheduled_at: datetime | None = None,
) -> RescheduleEligibility:
    """Gates are checked in a fixed order; the first unmet one is reported."""
    reschedule = policy.reschedule_policy
    remaining = max(reschedule.max_reschedules_per_booking - booking.reschedule_count, 0)

    def denied(condition: RescheduleCondition, message: str) -> RescheduleEligibility:
        return RescheduleEligibility(
            allowed=False,
            condition=condition,
            message=message,
            remaining_reschedules=remaining,
            fee_type=reschedule.fee_type,
            fee_amount=reschedule.fee_amount,
        )

    if not reschedule.allow_rescheduling:
        return denied(RescheduleCondition.disabled, "Rescheduling not allowed by provider")

    if booking.reschedule_count >= reschedule.max_reschedules_per_booking:
        return denied(
            RescheduleCondition.count_exceeded,
            f"Maximum reschedules ({reschedule.max_reschedules_per_booking}) exceeded",
        )

    if hours_until(booking.scheduled_at, now) < reschedule.min_notice_hours:
        return denied(
            RescheduleCondition.insufficient_notice,
            f"Minimum notice of {_format_hours(reschedule.min_notice_hours)} hours required",
        )

    if new_scheduled_at is not None and new_scheduled_at <= now:
        return denied(RescheduleCondition.invalid_new_time, "New appointment time must be in the future")

    return RescheduleEligibility(
        allowed=True,
        condition=None,
        message="Rescheduling allowed",
        remaining_reschedules=remaining,
        fee_type=reschedule.fee_type,
        fee_amount=reschedule.fee_amount,
    )


def _outcome_message(penalty: Decimal, refund: Decimal) -> str:
    if penalty == 0:
        return f"No cancellation fee; refund of {refund}"
    return f"Cancellation fee of {penalty}; refund of {refund}"


def _format_hours(hours: Decimal) -> str:
    normalized = hours.normalize()
    return format(normalized, "f")
