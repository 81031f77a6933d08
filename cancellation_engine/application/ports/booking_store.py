from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from cancellation_engine.domain.entities.booking import Booking, BookingStatus


class BookingStorePort(ABC):
    @abstractmethod
    def get(self, booking_id: str) -> Booking | None:
        raise NotImplementedError

    @abstractmethod
    def add(self, booking: Booking) -> None:
        """Insert a new booking. Raises ValueError if the id is already taken."""
        raise NotImplementedError

    @abstractmethod
    def compare_and_swap(self, updated: Booking, expected_version: int) -> bool:
        """
        Replace the stored booking with `updated` only if the stored version
        still equals `expected_version`.
        Returns False (and writes nothing) when another writer got there first.
        """
        raise NotImplementedError

    @abstractmethod
    def list_by_provider(self, provider_id: str) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def list_due(self, status: BookingStatus, scheduled_before: datetime) -> list[Booking]:
        """Bookings in `status` whose scheduled_at is at or before `scheduled_before`."""
        raise NotImplementedError
