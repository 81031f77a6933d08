#!/usr/bin/env python3
"""Run the no-show sweeper outside the API process (cron or a long-lived worker)."""

from __future__ import annotations

import argparse
import logging
import signal
import threading

from cancellation_engine.core.config import settings
from cancellation_engine.wiring.dependencies import get_no_show_sweeper, get_refund_gateway


def main() -> int:
    parser = argparse.ArgumentParser(description="Mark past-grace bookings as no-shows.")
    parser.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.NO_SHOW_SWEEP_INTERVAL_SECONDS,
        help="Seconds between sweeps when --loop is set",
    )
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    sweeper = get_no_show_sweeper()

    try:
        if not args.loop:
            report = sweeper.sweep_once()
            print(report.as_dict())
            return 1 if report.failed else 0

        stop_event = threading.Event()
        signal.signal(signal.SIGINT, lambda *_: stop_event.set())
        signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
        sweeper.run_forever(stop_event, args.interval)
        return 0
    finally:
        # Refunds for no-shows marked here are sent on background threads.
        get_refund_gateway().shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
