from __future__ import annotations

import logging
from collections import Counter

from cancellation_engine.application.exceptions import PolicyConfigurationError
from cancellation_engine.domain.entities.cancellation_policy import CancellationPolicy, PenaltyType

logger = logging.getLogger(__name__)


def validate_policy(policy: CancellationPolicy) -> CancellationPolicy:
    """
    Reject policies the evaluator cannot apply without guessing.
    Returns the policy unchanged so stores can validate inline on read.
    """
    problems: list[str] = []

    if not policy.rules:
        problems.append("at least one cancellation rule is required")

    zero_tiers = [r for r in policy.rules if r.time_before_appointment_hours == 0]
    if policy.rules and len(zero_tiers) != 1:
        problems.append(f"exactly one 0-hour rule is required, found {len(zero_tiers)}")

    if policy.free_cancellation_window_hours < 0:
        problems.append("free_cancellation_window_hours must be >= 0")

    for index, rule in enumerate(policy.rules):
        if rule.time_before_appointment_hours < 0:
            problems.append(f"rule {index}: time_before_appointment_hours must be >= 0")
        if not 0 <= rule.refund_percentage <= 100:
            problems.append(f"rule {index}: refund_percentage must be within 0-100")
        if rule.penalty_type == PenaltyType.percentage and not 0 <= rule.penalty_amount <= 100:
            problems.append(f"rule {index}: percentage penalty must be within 0-100")
        if rule.penalty_type == PenaltyType.fixed_amount and rule.penalty_amount < 0:
            problems.append(f"rule {index}: fixed penalty must be >= 0")

    no_show = policy.no_show_policy
    if no_show.penalty_type == PenaltyType.none:
        problems.append("no-show penalty_type must be percentage, fixed_amount or full_charge")
    if no_show.grace_period_minutes < 0:
        problems.append("no-show grace_period_minutes must be >= 0")
    if no_show.penalty_type == PenaltyType.percentage and not 0 <= no_show.penalty_amount <= 100:
        problems.append("no-show percentage penalty must be within 0-100")
    if no_show.penalty_type == PenaltyType.fixed_amount and no_show.penalty_amount < 0:
        problems.append("no-show fixed penalty must be >= 0")

    reschedule = policy.reschedule_policy
    if reschedule.max_reschedules_per_booking < 0:
        problems.append("max_reschedules_per_booking must be >= 0")

    for exception in policy.exceptions:
        if not 0 <= exception.refund_percentage <= 100:
            problems.append(f"exception {exception.reason.value}: refund_percentage must be within 0-100")

    if problems:
        raise PolicyConfigurationError(policy.provider_id, "; ".join(problems))

    duplicates = [
        str(hours)
        for hours, count in Counter(r.time_before_appointment_hours for r in policy.rules).items()
        if count > 1
    ]
    if duplicates:
        # Tolerated: the first rule in authoring order wins for a duplicated threshold.
        logger.warning(
            "Cancellation policy has duplicate rule thresholds",
            extra={"provider_id": policy.provider_id, "reason": ",".join(duplicates)},
        )

    return policy
