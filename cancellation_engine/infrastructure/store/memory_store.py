from __future__ import annotations

import threading
from datetime import datetime

from cancellation_engine.application.exceptions import PolicyNotFound
from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.policy_store import PolicyStorePort
from cancellation_engine.application.utils.policy_validation import validate_policy
from cancellation_engine.domain.entities.booking import Booking, BookingStatus
from cancellation_engine.domain.entities.cancellation_policy import CancellationPolicy


class MemoryBookingStore(BookingStorePort):
    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}
        # Guards the compare-and-replace only, the same span a conditional UPDATE would hold a row lock.
        self._lock = threading.Lock()

    def get(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    def add(self, booking: Booking) -> None:
        with self._lock:
            if booking.id in self._bookings:
                raise ValueError(f"Booking {booking.id} already exists")
            self._bookings[booking.id] = booking

    def compare_and_swap(self, updated: Booking, expected_version: int) -> bool:
        if updated.version <= expected_version:
            raise ValueError("Updated booking must carry a higher version")
        with self._lock:
            current = self._bookings.get(updated.id)
            if current is None or current.version != expected_version:
                return False
            self._bookings[updated.id] = updated
            return True

    def list_by_provider(self, provider_id: str) -> list[Booking]:
        return [b for b in list(self._bookings.values()) if b.provider_id == provider_id]

    def list_due(self, status: BookingStatus, scheduled_before: datetime) -> list[Booking]:
        due = [
            b
            for b in list(self._bookings.values())
            if b.status == status and b.scheduled_at <= scheduled_before
        ]
        return sorted(due, key=lambda b: b.scheduled_at)


class MemoryPolicyStore(PolicyStorePort):
    def __init__(self, policies: list[CancellationPolicy] | None = None) -> None:
        # Whole-dict replacement on write keeps readers lock-free.
        self._policies: dict[str, CancellationPolicy] = {p.provider_id: p for p in (policies or [])}

    def get(self, provider_id: str) -> CancellationPolicy:
        policy = self._policies.get(provider_id)
        if policy is None:
            raise PolicyNotFound(provider_id)
        return validate_policy(policy)

    def put(self, policy: CancellationPolicy) -> None:
        updated = dict(self._policies)
        updated[policy.provider_id] = policy
        self._policies = updated
