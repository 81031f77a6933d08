from __future__ import annotations

import logging
import threading

from cancellation_engine.application.ports.refund_gateway import RefundGatewayPort, RefundReceipt, RefundStatus


class RefundRetryWorker:
    """Periodically re-sends refunds the gateway could not settle on the first try."""

    def __init__(self, refund_gateway: RefundGatewayPort) -> None:
        self._refund_gateway = refund_gateway
        self._logger = logging.getLogger(__name__)

    def run_once(self) -> list[RefundReceipt]:
        receipts = self._refund_gateway.retry_pending()
        if receipts:
            settled = sum(1 for r in receipts if r.status == RefundStatus.acknowledged)
            self._logger.info(
                "Retried pending refunds",
                extra={"reason": f"settled={settled} still_queued={len(receipts) - settled}"},
            )
        return receipts

    def run_forever(self, stop_event: threading.Event, interval_seconds: float) -> None:
        self._logger.info("Refund retry worker started", extra={"reason": f"interval={interval_seconds}s"})
        while not stop_event.wait(interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                self._logger.exception("Refund retry pass crashed", extra={"reason": str(e)})
        self._logger.info("Refund retry worker stopped")
