from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cancellation_engine.domain.entities.booking import BookingStatus, CancellationRecord
    from cancellation_engine.domain.entities.cancellation_outcome import (
        CancellationOutcome,
        RescheduleCondition,
    )


class CancellationEngineError(RuntimeError):
    """Base class for every error raised by the cancellation engine."""
    pass


class NotFound(CancellationEngineError):
    """Raised when a booking or policy does not exist."""
    pass


class BookingNotFound(NotFound):
    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class PolicyNotFound(NotFound):
    def __init__(self, provider_id: str) -> None:
        super().__init__(f"No cancellation policy found for provider {provider_id}")
        self.provider_id = provider_id


class PolicyConfigurationError(CancellationEngineError):
    """Raised when a stored policy is malformed (e.g. missing the 0-hour tier)."""

    def __init__(self, provider_id: str, problem: str) -> None:
        super().__init__(f"Invalid cancellation policy for provider {provider_id}: {problem}")
        self.provider_id = provider_id
        self.problem = problem


class InvalidStateTransition(CancellationEngineError):
    """Raised when an operation targets a booking whose status does not allow it."""

    def __init__(self, booking_id: str, status: "BookingStatus", operation: str) -> None:
        super().__init__(f"Cannot {operation} booking {booking_id} in status {status.value}")
        self.booking_id = booking_id
        self.status = status
        self.operation = operation


class AlreadyFinalized(InvalidStateTransition):
    """Raised when the booking already reached a terminal state.

    Carries the stored cancellation record (if any) so callers can report the
    recorded outcome instead of a bare denial.
    """

    def __init__(
        self,
        booking_id: str,
        status: "BookingStatus",
        operation: str,
        record: "CancellationRecord | None" = None,
    ) -> None:
        super().__init__(booking_id, status, operation)
        self.record = record


class CancellationWindowClosed(InvalidStateTransition):
    """Raised when cancelling a booking whose appointment time already passed."""

    def __init__(self, booking_id: str, status: "BookingStatus", outcome: "CancellationOutcome") -> None:
        super().__init__(booking_id, status, "cancel")
        self.outcome = outcome


class ConcurrentModification(CancellationEngineError):
    """Raised when the version compare-and-swap keeps losing; transient, safe to retry."""

    def __init__(self, booking_id: str, attempts: int) -> None:
        super().__init__(f"Booking {booking_id} was modified concurrently ({attempts} attempts)")
        self.booking_id = booking_id
        self.attempts = attempts


class RescheduleNotAllowed(CancellationEngineError):
    def __init__(self, booking_id: str, condition: "RescheduleCondition", detail: str) -> None:
        super().__init__(detail)
        self.booking_id = booking_id
        self.condition = condition
        self.detail = detail


class NoShowNotDue(CancellationEngineError):
    pass


class NoShowDisabled(CancellationEngineError):
    pass


class RefundGatewayError(RuntimeError):
    """Raised when the refund provider fails (timeouts, network errors, rejected request)."""
    pass
