from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class PenaltyType(str, Enum):
    none = "none"
    percentage = "percentage"
    fixed_amount = "fixed_amount"
    full_charge = "full_charge"


class RescheduleFeeType(str, Enum):
    none = "none"
    fixed_amount = "fixed_amount"


class ExceptionReason(str, Enum):
    emergency = "emergency"
    illness = "illness"
    weather = "weather"
    provider_cancellation = "provider_cancellation"
    other = "other"


@dataclass(frozen=True)
class CancellationRule:
    time_before_appointment_hours: Decimal
    penalty_type: PenaltyType
    penalty_amount: Decimal = Decimal("0")
    refund_percentage: Decimal = Decimal("100")


@dataclass(frozen=True)
class NoShowPolicy:
    enabled: bool = True
    grace_period_minutes: int = 15
    penalty_type: PenaltyType = PenaltyType.full_charge
    penalty_amount: Decimal = Decimal("100")


@dataclass(frozen=True)
class ReschedulePolicy:
    allow_rescheduling: bool = True
    max_reschedules_per_booking: int = 2
    min_notice_hours: Decimal = Decimal("24")
    fee_type: RescheduleFeeType = RescheduleFeeType.none
    fee_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class PolicyException:
    reason: ExceptionReason
    refund_percentage: Decimal = Decimal("100")
    requires_proof: bool = False
    notes: str | None = None


@dataclass(frozen=True)
class CancellationPolicy:
    id: str
    provider_id: str
    policy_name: str
    free_cancellation_window_hours: Decimal
    rules: tuple[CancellationRule, ...]
    no_show_policy: NoShowPolicy = NoShowPolicy()
    reschedule_policy: ReschedulePolicy = ReschedulePolicy()
    exceptions: tuple[PolicyException, ...] = field(default_factory=tuple)
    description: str | None = None

    def find_exception(self, reason: str | None) -> PolicyException | None:
        if not reason:
            return None
        normalized = reason.strip().lower()
        for exception in self.exceptions:
            if exception.reason.value == normalized:
                return exception
        return None
