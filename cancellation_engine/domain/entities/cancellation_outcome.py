from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from cancellation_engine.domain.entities.booking import CancellationRecord
from cancellation_engine.domain.entities.cancellation_policy import RescheduleFeeType


@dataclass(frozen=True)
class CancellationOutcome:
    can_cancel: bool
    penalty: Decimal
    refund: Decimal
    rule: str
    message: str
    hours_until: Decimal | None = None
    requires_proof: bool = False

    @staticmethod
    def from_record(record: CancellationRecord) -> "CancellationOutcome":
        return CancellationOutcome(
            can_cancel=True,
            penalty=record.penalty,
            refund=record.refund,
            rule=record.rule_matched,
            message=record.reason,
        )


class RescheduleCondition(str, Enum):
    disabled = "disabled"
    count_exceeded = "count_exceeded"
    insufficient_notice = "insufficient_notice"
    invalid_new_time = "invalid_new_time"


@dataclass(frozen=True)
class RescheduleEligibility:
    allowed: bool
    condition: RescheduleCondition | None
    message: str
    remaining_reschedules: int
    fee_type: RescheduleFeeType = RescheduleFeeType.none
    fee_amount: Decimal = Decimal("0")
