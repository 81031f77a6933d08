from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class RefundStatus(str, Enum):
    acknowledged = "acknowledged"
    queued = "queued"


@dataclass(frozen=True)
class RefundReceipt:
    booking_id: str
    amount: Decimal
    status: RefundStatus
    reference: str | None = None


class RefundGatewayPort(ABC):
    @abstractmethod
    def refund(self, booking_id: str, amount: Decimal) -> RefundReceipt:
        """
        Return `amount` to the client of `booking_id`.

        Retries and durability are the gateway's concern: an adapter that cannot
        settle right away returns a `queued` receipt. Raises RefundGatewayError
        when the request cannot even be accepted.
        """
        raise NotImplementedError

    def retry_pending(self) -> list[RefundReceipt]:
        """Re-send refunds an earlier call left `queued`. Adapters that never queue have nothing to do."""
        return []

    def shutdown(self) -> None:
        """Release worker threads or connections; pending work is flushed first."""
        return None
