import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cancellation_engine.api.v1.bookings import router as bookings_router
from cancellation_engine.api.v1.policies import router as policies_router
from cancellation_engine.core.config import settings
from cancellation_engine.wiring.dependencies import get_no_show_sweeper, get_refund_gateway, get_refund_retry_worker


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in ("booking_id", "provider_id", "status", "rule", "penalty", "refund", "version", "attempt", "reason"):
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


handler = logging.StreamHandler()
handler.setFormatter(ContextFormatter("%(levelname)s:%(name)s:%(message)s"))

root = logging.getLogger()
root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
root.handlers.clear()
root.addHandler(handler)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    stop_event = threading.Event()
    workers: list[threading.Thread] = []
    if settings.NO_SHOW_SWEEP_ENABLED:
        sweeper = get_no_show_sweeper()
        workers.append(
            threading.Thread(
                target=sweeper.run_forever,
                args=(stop_event, settings.NO_SHOW_SWEEP_INTERVAL_SECONDS),
                name="no-show-sweeper",
                daemon=True,
            )
        )
    if settings.REFUND_GATEWAY_URL:
        retry_worker = get_refund_retry_worker()
        workers.append(
            threading.Thread(
                target=retry_worker.run_forever,
                args=(stop_event, settings.REFUND_RETRY_INTERVAL_SECONDS),
                name="refund-retry",
                daemon=True,
            )
        )
    for worker in workers:
        worker.start()
    yield
    stop_event.set()
    for worker in workers:
        worker.join(timeout=5)
    if settings.REFUND_GATEWAY_URL:
        # Let in-flight background refunds finish before the process exits.
        get_refund_gateway().shutdown()
        logger.info("Refund gateway shut down")


app = FastAPI(title="Cancellation & Penalty Policy Engine", version="1.0.0", lifespan=lifespan)

app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(policies_router, prefix="/api/v1", tags=["cancellation-policies"])


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
