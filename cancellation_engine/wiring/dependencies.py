from functools import lru_cache
import logging
from pathlib import Path

from cancellation_engine.core.config import settings
from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.clock import ClockPort
from cancellation_engine.application.ports.policy_store import PolicyStorePort
from cancellation_engine.application.ports.refund_gateway import RefundGatewayPort
from cancellation_engine.application.use_cases.booking_lifecycle import BookingStateMachine
from cancellation_engine.application.use_cases.cancellation_statistics import CancellationStatisticsUseCase
from cancellation_engine.application.use_cases.no_show_sweep import NoShowSweeper
from cancellation_engine.application.use_cases.refund_retry import RefundRetryWorker
from cancellation_engine.infrastructure.clock.system_clock import SystemClock
from cancellation_engine.infrastructure.payments.background_refund_gateway import BackgroundRefundGateway
from cancellation_engine.infrastructure.payments.http_refund_gateway import HttpRefundGateway
from cancellation_engine.infrastructure.payments.mock_refund_gateway import MockRefundGateway
from cancellation_engine.infrastructure.policies.demo_data import seed_demo_data
from cancellation_engine.infrastructure.store.json_store import JsonBookingStore, JsonPolicyStore
from cancellation_engine.infrastructure.store.memory_store import MemoryBookingStore, MemoryPolicyStore


logger = logging.getLogger(__name__)

_booking_store: BookingStorePort | None = None
_policy_store: PolicyStorePort | None = None


@lru_cache
def get_clock() -> ClockPort:
    return SystemClock()


def get_booking_store() -> BookingStorePort:
    global _booking_store
    if _booking_store is None:
        _init_stores()
    return _booking_store


def get_policy_store() -> PolicyStorePort:
    global _policy_store
    if _policy_store is None:
        _init_stores()
    return _policy_store


def _init_stores() -> None:
    global _booking_store, _policy_store
    if settings.STORE_PROVIDER.lower() == "json":
        data_dir = Path(settings.DATA_DIR)
        _booking_store = JsonBookingStore(data_dir=str(data_dir / "bookings"))
        _policy_store = JsonPolicyStore(data_dir=str(data_dir / "policies"))
    else:
        _booking_store = MemoryBookingStore()
        _policy_store = MemoryPolicyStore()
    logger.info("Stores initialised", extra={"reason": f"provider={settings.STORE_PROVIDER}"})

    if settings.SEED_DEMO_DATA:
        seed_demo_data(_booking_store, _policy_store, get_clock())


@lru_cache
def get_refund_gateway() -> RefundGatewayPort:
    if not settings.REFUND_GATEWAY_URL:
        if settings.ENV.lower() in {"dev", "local", "test"}:
            logger.info("Using MockRefundGateway (REFUND_GATEWAY_URL missing, ENV=%s)", settings.ENV)
            return MockRefundGateway()
        raise ValueError("REFUND_GATEWAY_URL is required outside dev/local.")

    logger.info("Using HttpRefundGateway behind a background worker pool")
    return BackgroundRefundGateway(
        delegate=HttpRefundGateway(
            base_url=settings.REFUND_GATEWAY_URL,
            api_key=settings.REFUND_GATEWAY_API_KEY,
            timeout_seconds=settings.REFUND_GATEWAY_TIMEOUT_SECONDS,
            pending_path=_pending_refunds_path(),
        ),
        max_workers=settings.REFUND_GATEWAY_WORKERS,
    )


def _pending_refunds_path() -> str | None:
    if settings.STORE_PROVIDER.lower() != "json":
        return None
    return str(Path(settings.DATA_DIR) / "refunds" / "pending.json")


def get_refund_retry_worker() -> RefundRetryWorker:
    return RefundRetryWorker(refund_gateway=get_refund_gateway())


def get_state_machine() -> BookingStateMachine:
    return BookingStateMachine(
        bookings=get_booking_store(),
        policies=get_policy_store(),
        clock=get_clock(),
        refund_gateway=get_refund_gateway(),
        max_attempts=settings.CAS_MAX_RETRIES,
        minor_units=settings.CURRENCY_MINOR_UNITS,
    )


def get_no_show_sweeper() -> NoShowSweeper:
    return NoShowSweeper(
        bookings=get_booking_store(),
        state_machine=get_state_machine(),
        clock=get_clock(),
    )


def get_statistics_use_case() -> CancellationStatisticsUseCase:
    return CancellationStatisticsUseCase(
        bookings=get_booking_store(),
        clock=get_clock(),
        minor_units=settings.CURRENCY_MINOR_UNITS,
    )
