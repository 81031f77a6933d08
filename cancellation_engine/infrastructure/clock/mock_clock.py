from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

from cancellation_engine.application.ports.clock import ClockPort


class MockClock(ClockPort):
    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            raise ValueError("MockClock needs a timezone-aware datetime")
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, now: datetime) -> None:
        with self._lock:
            self._now = now

    def advance(self, **kwargs: float) -> datetime:
        """advance(hours=2, minutes=16) moves the clock forward and returns the new time."""
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now
