import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from cancellation_engine.api.v1.schemas import (
    BookingSummarySchema,
    CancellationOutcomeSchema,
    CancellationRecordSchema,
    CancelRequestSchema,
    RescheduleEligibilitySchema,
    RescheduleRequestSchema,
)
from cancellation_engine.application.exceptions import (
    AlreadyFinalized,
    CancellationWindowClosed,
    ConcurrentModification,
    InvalidStateTransition,
    NotFound,
    PolicyConfigurationError,
    RescheduleNotAllowed,
)
from cancellation_engine.application.use_cases.booking_lifecycle import BookingStateMachine
from cancellation_engine.wiring.dependencies import get_state_machine

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/bookings/{booking_id}/cancellation-preview", response_model=CancellationOutcomeSchema)
def preview_cancellation(
    booking_id: str,
    reason: str | None = Query(None, max_length=500),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    try:
        outcome = machine.preview(booking_id, reason=reason)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadyFinalized as e:
        raise HTTPException(status_code=409, detail=_finalized_detail(e))
    except PolicyConfigurationError as e:
        logger.error("Policy configuration error", extra={"booking_id": booking_id, "reason": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    return CancellationOutcomeSchema.from_outcome(outcome)


@router.post("/bookings/{booking_id}/cancel", response_model=CancellationOutcomeSchema)
def cancel_booking(
    booking_id: str,
    req: CancelRequestSchema,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    try:
        outcome = machine.cancel(booking_id, reason=req.reason)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadyFinalized as e:
        raise HTTPException(status_code=409, detail=_finalized_detail(e))
    except CancellationWindowClosed as e:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "cancellation_window_closed",
                "message": e.outcome.message,
                "status": e.status.value,
            },
        )
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail={"error": "invalid_state_transition", "status": e.status.value})
    except ConcurrentModification as e:
        raise HTTPException(status_code=503, detail=str(e), headers={"Retry-After": "1"})
    except PolicyConfigurationError as e:
        logger.error("Policy configuration error", extra={"booking_id": booking_id, "reason": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    return CancellationOutcomeSchema.from_outcome(outcome)


@router.post("/bookings/{booking_id}/reschedule", response_model=BookingSummarySchema)
def reschedule_booking(
    booking_id: str,
    req: RescheduleRequestSchema,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    try:
        booking = machine.reschedule(booking_id, req.new_scheduled_at)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RescheduleNotAllowed as e:
        raise HTTPException(
            status_code=422,
            detail={"error": "reschedule_not_allowed", "condition": e.condition.value, "message": e.detail},
        )
    except AlreadyFinalized as e:
        raise HTTPException(status_code=409, detail=_finalized_detail(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail={"error": "invalid_state_transition", "status": e.status.value})
    except ConcurrentModification as e:
        raise HTTPException(status_code=503, detail=str(e), headers={"Retry-After": "1"})
    except PolicyConfigurationError as e:
        logger.error("Policy configuration error", extra={"booking_id": booking_id, "reason": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    return BookingSummarySchema.from_booking(booking)


@router.get("/bookings/{booking_id}/reschedule-eligibility", response_model=RescheduleEligibilitySchema)
def reschedule_eligibility(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    try:
        eligibility = machine.reschedule_eligibility(booking_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadyFinalized as e:
        raise HTTPException(status_code=409, detail=_finalized_detail(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail={"error": "invalid_state_transition", "status": e.status.value})
    except PolicyConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return RescheduleEligibilitySchema.from_eligibility(eligibility)


def _finalized_detail(e: AlreadyFinalized) -> dict:
    return {
        "error": "already_finalized",
        "status": e.status.value,
        "cancellation": (
            CancellationRecordSchema.from_record(e.record).model_dump(mode="json") if e.record else None
        ),
    }
