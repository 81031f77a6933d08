from fastapi import APIRouter, Depends

from cancellation_engine.api.v1.schemas import CancellationPolicySchema, CancellationStatisticsSchema
from cancellation_engine.application.use_cases.cancellation_statistics import CancellationStatisticsUseCase
from cancellation_engine.infrastructure.policies.policy_templates import default_policy
from cancellation_engine.wiring.dependencies import get_statistics_use_case

router = APIRouter()


@router.get("/cancellation-policies/template", response_model=CancellationPolicySchema)
def policy_template(provider_id: str = "template"):
    return CancellationPolicySchema.from_policy(default_policy(provider_id))


@router.get("/providers/{provider_id}/cancellation-statistics", response_model=CancellationStatisticsSchema)
def cancellation_statistics(
    provider_id: str,
    uc: CancellationStatisticsUseCase = Depends(get_statistics_use_case),
):
    stats = uc.execute(provider_id)
    return CancellationStatisticsSchema(
        provider_id=stats.provider_id,
        total_bookings=stats.total_bookings,
        total_cancellations=stats.total_cancellations,
        cancelled=stats.cancelled,
        no_shows=stats.no_shows,
        cancellation_rate=stats.cancellation_rate,
        total_penalties_collected=stats.total_penalties_collected,
        total_refunds_issued=stats.total_refunds_issued,
        average_penalty=stats.average_penalty,
        recent_cancellations=stats.recent_cancellations,
        reason_breakdown=stats.reason_breakdown,
    )
