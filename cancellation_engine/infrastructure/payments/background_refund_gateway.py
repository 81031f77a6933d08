from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal

from cancellation_engine.application.ports.refund_gateway import RefundGatewayPort, RefundReceipt, RefundStatus


class BackgroundRefundGateway(RefundGatewayPort):
    """Hands refunds to a worker pool so the request path never waits on the payment provider."""

    def __init__(self, delegate: RefundGatewayPort, max_workers: int = 4) -> None:
        self._delegate = delegate
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="refund")
        self._logger = logging.getLogger(__name__)

    def refund(self, booking_id: str, amount: Decimal) -> RefundReceipt:
        future = self._executor.submit(self._delegate.refund, booking_id, amount)
        future.add_done_callback(lambda f: self._log_result(booking_id, amount, f))
        return RefundReceipt(booking_id=booking_id, amount=amount, status=RefundStatus.queued)

    def retry_pending(self) -> list[RefundReceipt]:
        # Called from the retry worker's own thread, so it runs inline.
        return self._delegate.retry_pending()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._delegate.shutdown()

    def _log_result(self, booking_id: str, amount: Decimal, future: Future) -> None:
        error = future.exception()
        if error is not None:
            self._logger.error(
                "Background refund failed",
                extra={"booking_id": booking_id, "refund": str(amount), "reason": str(error)},
            )
            return
        receipt = future.result()
        self._logger.info(
            "Background refund settled",
            extra={"booking_id": booking_id, "refund": str(amount), "status": receipt.status.value},
        )
