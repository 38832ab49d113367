# scripts/run_worker.py
from __future__ import annotations

import argparse
import logging
import signal
import threading

from app.workers.payout_worker import process_once, run_forever
from db import close_pool
from services.observability import configure_logging
from settings import validate_env_settings


logger = logging.getLogger("payouts.worker")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the payout worker pool.")
    parser.add_argument("--once", action="store_true", help="claim and process a single batch, then exit")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--poll-seconds", type=float, default=None)
    args = parser.parse_args()

    configure_logging()
    validate_env_settings()

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())

    try:
        if args.once:
            n = process_once(batch_size=args.batch_size)
            logger.info("processed=%s", n)
        else:
            run_forever(poll_seconds=args.poll_seconds, batch_size=args.batch_size, stop_event=stop)
    finally:
        close_pool()
        logger.info("payout worker stopped")


if __name__ == "__main__":
    main()
