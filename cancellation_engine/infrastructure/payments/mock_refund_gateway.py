from __future__ import annotations

import logging
import threading
from decimal import Decimal

from cancellation_engine.application.exceptions import RefundGatewayError
from cancellation_engine.application.ports.refund_gateway import RefundGatewayPort, RefundReceipt, RefundStatus


class MockRefundGateway(RefundGatewayPort):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.refunds: list[tuple[str, Decimal]] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    def refund(self, booking_id: str, amount: Decimal) -> RefundReceipt:
        if self.fail:
            raise RefundGatewayError(f"Mock refund gateway rejected refund for {booking_id}")
        with self._lock:
            self.refunds.append((booking_id, amount))
            reference = f"mock_refund_{len(self.refunds)}"
        self._logger.info(
            "Mock refund issued",
            extra={"booking_id": booking_id, "refund": str(amount)},
        )
        return RefundReceipt(booking_id=booking_id, amount=amount, status=RefundStatus.acknowledged, reference=reference)
