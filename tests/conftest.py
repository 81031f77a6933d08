from __future__ import annotations

import pytest

from cancellation_engine.application.use_cases.booking_lifecycle import BookingStateMachine
from cancellation_engine.infrastructure.clock.mock_clock import MockClock
from cancellation_engine.infrastructure.payments.mock_refund_gateway import MockRefundGateway
from cancellation_engine.infrastructure.store.memory_store import MemoryBookingStore, MemoryPolicyStore

from factories import NOW, example_policy


@pytest.fixture
def clock() -> MockClock:
    return MockClock(NOW)


@pytest.fixture
def bookings() -> MemoryBookingStore:
    return MemoryBookingStore()


@pytest.fixture
def policies() -> MemoryPolicyStore:
    return MemoryPolicyStore([example_policy()])


@pytest.fixture
def gateway() -> MockRefundGateway:
    return MockRefundGateway()


@pytest.fixture
def machine(bookings, policies, clock, gateway) -> BookingStateMachine:
    return BookingStateMachine(bookings=bookings, policies=policies, clock=clock, refund_gateway=gateway)
