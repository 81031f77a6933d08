from __future__ import annotations

import json
import logging
import threading
from decimal import Decimal
from pathlib import Path

import httpx

from cancellation_engine.application.exceptions import RefundGatewayError
from cancellation_engine.application.ports.refund_gateway import RefundGatewayPort, RefundReceipt, RefundStatus
from cancellation_engine.core.config import settings


class _RetryableRefundFailure(Exception):
    pass


class HttpRefundGateway(RefundGatewayPort):
    """
    Posts refunds to the payment provider.

    Transport errors and 5xx responses leave the refund in a pending queue that
    `retry_pending()` drains. With `pending_path` set the queue is kept in a JSON
    file so it survives a restart. 4xx responses raise RefundGatewayError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.Client | None = None,
        pending_path: str | None = None,
    ) -> None:
        self._base_url = (base_url or settings.REFUND_GATEWAY_URL or "").rstrip("/")
        self._api_key = api_key or settings.REFUND_GATEWAY_API_KEY
        self._client = client or httpx.Client(timeout=timeout_seconds or settings.REFUND_GATEWAY_TIMEOUT_SECONDS)
        self._pending_path = Path(pending_path) if pending_path else None
        self._pending_lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

        if not self._base_url:
            raise ValueError("REFUND_GATEWAY_URL is required for the HTTP refund gateway")

        self._pending: dict[str, Decimal] = self._load_pending()
        if self._pending:
            self._logger.info("Loaded pending refunds", extra={"reason": f"count={len(self._pending)}"})

    def refund(self, booking_id: str, amount: Decimal) -> RefundReceipt:
        try:
            reference = self._post_refund(booking_id, amount)
        except (httpx.TransportError, _RetryableRefundFailure) as e:
            with self._pending_lock:
                self._pending[booking_id] = amount
                self._save_pending()
            self._logger.warning(
                "Refund not settled, queued for retry",
                extra={"booking_id": booking_id, "refund": str(amount), "reason": str(e)},
            )
            return RefundReceipt(booking_id=booking_id, amount=amount, status=RefundStatus.queued)

        with self._pending_lock:
            if self._pending.pop(booking_id, None) is not None:
                self._save_pending()
        return RefundReceipt(
            booking_id=booking_id,
            amount=amount,
            status=RefundStatus.acknowledged,
            reference=reference,
        )

    def pending(self) -> dict[str, Decimal]:
        with self._pending_lock:
            return dict(self._pending)

    def retry_pending(self) -> list[RefundReceipt]:
        receipts: list[RefundReceipt] = []
        for booking_id, amount in self.pending().items():
            try:
                receipts.append(self.refund(booking_id, amount))
            except RefundGatewayError as e:
                # Rejected outright: retrying cannot help, so stop tracking it.
                with self._pending_lock:
                    self._pending.pop(booking_id, None)
                    self._save_pending()
                self._logger.error(
                    "Pending refund rejected, dropped from queue",
                    extra={"booking_id": booking_id, "refund": str(amount), "reason": str(e)},
                )
        return receipts

    def shutdown(self) -> None:
        self._client.close()

    def _post_refund(self, booking_id: str, amount: Decimal) -> str | None:
        url = f"{self._base_url}/refunds"
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {"booking_id": booking_id, "amount": str(amount)}
        # Same key on every retry so the provider can de-duplicate.
        headers["Idempotency-Key"] = f"refund-{booking_id}"

        response = self._client.post(url, json=payload, headers=headers)
        if response.status_code >= 500:
            raise _RetryableRefundFailure(f"Refund provider returned {response.status_code} for {booking_id}")
        if response.status_code >= 400:
            self._logger.error(
                "Refund request rejected",
                extra={"booking_id": booking_id, "refund": str(amount), "status": response.status_code},
            )
            raise RefundGatewayError(f"Refund provider returned {response.status_code} for {booking_id}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        reference = data.get("id") or data.get("refund_id")
        self._logger.info("Refund accepted", extra={"booking_id": booking_id, "refund": str(amount)})
        return str(reference) if reference else None

    def _load_pending(self) -> dict[str, Decimal]:
        if self._pending_path is None or not self._pending_path.exists():
            return {}
        with open(self._pending_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return {booking_id: Decimal(amount) for booking_id, amount in data.items()}

    def _save_pending(self) -> None:
        # Caller holds _pending_lock.
        if self._pending_path is None:
            return
        self._pending_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._pending_path.with_suffix(".json.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump({k: str(v) for k, v in self._pending.items()}, f, indent=2)
            temp_path.replace(self._pending_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise
