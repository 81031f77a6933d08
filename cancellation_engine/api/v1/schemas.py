from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from cancellation_engine.domain.entities.booking import Booking, CancellationRecord
from cancellation_engine.domain.entities.cancellation_outcome import CancellationOutcome, RescheduleEligibility
from cancellation_engine.domain.entities.cancellation_policy import CancellationPolicy


class CancelRequestSchema(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RescheduleRequestSchema(BaseModel):
    new_scheduled_at: datetime

    @field_validator("new_scheduled_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("new_scheduled_at must include a timezone offset")
        return value


class CancellationOutcomeSchema(BaseModel):
    can_cancel: bool
    penalty: Decimal
    refund: Decimal
    rule: str
    message: str
    hours_until: Decimal | None = None
    requires_proof: bool = False

    @staticmethod
    def from_outcome(outcome: CancellationOutcome) -> "CancellationOutcomeSchema":
        hours = outcome.hours_until.quantize(Decimal("0.01")) if outcome.hours_until is not None else None
        return CancellationOutcomeSchema(
            can_cancel=outcome.can_cancel,
            penalty=outcome.penalty,
            refund=outcome.refund,
            rule=outcome.rule,
            message=outcome.message,
            hours_until=hours,
            requires_proof=outcome.requires_proof,
        )


class CancellationRecordSchema(BaseModel):
    kind: str
    rule_matched: str
    penalty: Decimal
    refund: Decimal
    reason: str
    occurred_at: datetime
    client_reason: str | None = None

    @staticmethod
    def from_record(record: CancellationRecord) -> "CancellationRecordSchema":
        return CancellationRecordSchema(
            kind=record.kind.value,
            rule_matched=record.rule_matched,
            penalty=record.penalty,
            refund=record.refund,
            reason=record.reason,
            occurred_at=record.occurred_at,
            client_reason=record.client_reason,
        )


class BookingSummarySchema(BaseModel):
    id: str
    provider_id: str
    client_id: str
    amount: Decimal
    scheduled_at: datetime
    status: str
    reschedule_count: int
    version: int
    cancellation: CancellationRecordSchema | None = None

    @staticmethod
    def from_booking(booking: Booking) -> "BookingSummarySchema":
        return BookingSummarySchema(
            id=booking.id,
            provider_id=booking.provider_id,
            client_id=booking.client_id,
            amount=booking.amount,
            scheduled_at=booking.scheduled_at,
            status=booking.status.value,
            reschedule_count=booking.reschedule_count,
            version=booking.version,
            cancellation=(
                CancellationRecordSchema.from_record(booking.cancellation) if booking.cancellation else None
            ),
        )


class RescheduleEligibilitySchema(BaseModel):
    allowed: bool
    condition: str | None = None
    message: str
    remaining_reschedules: int
    fee_type: str
    fee_amount: Decimal

    @staticmethod
    def from_eligibility(eligibility: RescheduleEligibility) -> "RescheduleEligibilitySchema":
        return RescheduleEligibilitySchema(
            allowed=eligibility.allowed,
            condition=eligibility.condition.value if eligibility.condition else None,
            message=eligibility.message,
            remaining_reschedules=eligibility.remaining_reschedules,
            fee_type=eligibility.fee_type.value,
            fee_amount=eligibility.fee_amount,
        )


class CancellationStatisticsSchema(BaseModel):
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
    reason_breakdown: dict[str, int] = Field(default_factory=dict)


class CancellationRuleSchema(BaseModel):
    time_before_appointment_hours: Decimal
    penalty_type: str
    penalty_amount: Decimal
    refund_percentage: Decimal


class NoShowPolicySchema(BaseModel):
    enabled: bool
    grace_period_minutes: int
    penalty_type: str
    penalty_amount: Decimal


class ReschedulePolicySchema(BaseModel):
    allow_rescheduling: bool
    max_reschedules_per_booking: int
    min_notice_hours: Decimal
    fee_type: str
    fee_amount: Decimal


class PolicyExceptionSchema(BaseModel):
    reason: str
    refund_percentage: Decimal
    requires_proof: bool
    notes: str | None = None


class CancellationPolicySchema(BaseModel):
    id: str
    provider_id: str
    policy_name: str
    description: str | None = None
    free_cancellation_window_hours: Decimal
    rules: list[CancellationRuleSchema]
    no_show_policy: NoShowPolicySchema
    reschedule_policy: ReschedulePolicySchema
    exceptions: list[PolicyExceptionSchema] = Field(default_factory=list)

    @staticmethod
    def from_policy(policy: CancellationPolicy) -> "CancellationPolicySchema":
        no_show = policy.no_show_policy
        reschedule = policy.reschedule_policy
        return CancellationPolicySchema(
            id=policy.id,
            provider_id=policy.provider_id,
            policy_name=policy.policy_name,
            description=policy.description,
            free_cancellation_window_hours=policy.free_cancellation_window_hours,
            rules=[
                CancellationRuleSchema(
                    time_before_appointment_hours=r.time_before_appointment_hours,
                    penalty_type=r.penalty_type.value,
                    penalty_amount=r.penalty_amount,
                    refund_percentage=r.refund_percentage,
                )
                for r in policy.rules
            ],
            no_show_policy=NoShowPolicySchema(
                enabled=no_show.enabled,
                grace_period_minutes=no_show.grace_period_minutes,
                penalty_type=no_show.penalty_type.value,
                penalty_amount=no_show.penalty_amount,
            ),
            reschedule_policy=ReschedulePolicySchema(
                allow_rescheduling=reschedule.allow_rescheduling,
                max_reschedules_per_booking=reschedule.max_reschedules_per_booking,
                min_notice_hours=reschedule.min_notice_hours,
                fee_type=reschedule.fee_type.value,
                fee_amount=reschedule.fee_amount,
            ),
            exceptions=[
                PolicyExceptionSchema(
                    reason=e.reason.value,
                    refund_percentage=e.refund_percentage,
                    requires_proof=e.requires_proof,
                    notes=e.notes,
                )
                for e in policy.exceptions
            ],
        )
