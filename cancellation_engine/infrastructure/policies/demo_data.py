from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.clock import ClockPort
from cancellation_engine.application.ports.policy_store import PolicyStorePort
from cancellation_engine.domain.entities.booking import Booking, BookingStatus
from cancellation_engine.infrastructure.policies.policy_templates import default_policy

DEMO_PROVIDER_ID = "demo-provider"

logger = logging.getLogger(__name__)


def seed_demo_data(bookings: BookingStorePort, policies: PolicyStorePort, clock: ClockPort) -> None:
    """Local development fixtures: one provider on the default policy and a few bookings."""
    now = clock.now()
    policies.put(default_policy(DEMO_PROVIDER_ID))

    demo = [
        ("demo-booking-far", timedelta(hours=72), Decimal("100.00")),
        ("demo-booking-day", timedelta(hours=30), Decimal("100.00")),
        ("demo-booking-soon", timedelta(hours=2), Decimal("80.00")),
        ("demo-booking-missed", -timedelta(minutes=30), Decimal("80.00")),
    ]
    for booking_id, lead, amount in demo:
        if bookings.get(booking_id) is not None:
            continue
        bookings.add(
            Booking(
                id=booking_id,
                provider_id=DEMO_PROVIDER_ID,
                client_id="demo-client",
                amount=amount,
                scheduled_at=now + lead,
                status=BookingStatus.upcoming,
                created_at=now,
                updated_at=now,
            )
        )
    logger.info("Seeded demo bookings", extra={"provider_id": DEMO_PROVIDER_ID})
