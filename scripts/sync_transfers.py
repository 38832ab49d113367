# scripts/sync_transfers.py
from __future__ import annotations

import argparse
import logging
import signal
import threading

from db import close_pool
from services.observability import configure_logging
from services.transfer_sync import sync_once
from settings import settings, validate_env_settings


logger = logging.getLogger("payouts.sync")


def main() -> None:
    parser = argparse.ArgumentParser(description="Poll the rail for accepted transfers and reconcile their status.")
    parser.add_argument("--once", action="store_true", help="run a single pass, then exit")
    parser.add_argument("--interval", type=float, default=None, help="seconds between passes")
    parser.add_argument("--lookback-days", type=int, default=None)
    args = parser.parse_args()

    configure_logging()
    validate_env_settings()

    interval = max(1.0, float(args.interval or settings.TRANSFER_SYNC_INTERVAL_SECONDS))
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())

    logger.info("transfer sync starting; interval=%ss once=%s", interval, args.once)
    try:
        while not stop.is_set():
            try:
                sync_once(lookback_days=args.lookback_days)
            except Exception:
                logger.exception("transfer sync pass failed")
                raise
            if args.once:
                break
            stop.wait(interval)
    finally:
        close_pool()
        logger.info("transfer sync stopped")


if __name__ == "__main__":
    main()
