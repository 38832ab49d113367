# app/workers/payout_worker.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from db import get_conn
from app.payouts import dispatcher, repository
from app.payouts.errors import LeaseLostError
from app.payouts.model import ClaimedPayout, Failed, Outcome, PayoutRecord
from app.providers.base import GatewayError
from app.providers.factory import get_gateway
from services import metrics
from services.observability import configure_logging, set_request_id
from settings import settings

logger = logging.getLogger("payouts.worker")

RETRIES_EXHAUSTED = "GATEWAY_RETRIES_EXHAUSTED"


def backoff_delay(attempt: int) -> float:
    # 1, 2, 4, 8, 10, 10 ... seconds with the default policy
    delay = settings.GATEWAY_BACKOFF_INITIAL_S * (settings.GATEWAY_BACKOFF_MULTIPLIER ** max(0, attempt - 1))
    return min(delay, settings.GATEWAY_BACKOFF_MAX_S)


def call_with_retries(
    gateway,
    payout: PayoutRecord,
    *,
    recipient_id: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Outcome:
    """
    One bounded gateway exchange. Retryable errors back off exponentially up
    to GATEWAY_MAX_RETRIES attempts; the result is always an Outcome.
    """
    max_attempts = settings.GATEWAY_MAX_RETRIES
    attempt = 0
    while True:
        attempt += 1
        try:
            result = gateway.send_transfer(payout, recipient_id=recipient_id)
        except GatewayError as exc:
            if not exc.retryable:
                metrics.increment_gateway_attempt("failed")
                logger.warning(
                    "gateway_failed payout=%s attempt=%s code=%s status=%s",
                    payout.id,
                    attempt,
                    exc.code,
                    exc.status_code,
                )
                return Failed(error_code=exc.code, error_message=exc.message, provider_response=exc.response)

            if attempt >= max_attempts:
                metrics.increment_gateway_attempt("exhausted")
                logger.error(
                    "gateway_retries_exhausted payout=%s attempts=%s last_code=%s",
                    payout.id,
                    attempt,
                    exc.code,
                )
                return Failed(
                    error_code=RETRIES_EXHAUSTED,
                    error_message=f"{exc.code}: {exc.message} (after {attempt} attempts)",
                    provider_response=exc.response,
                )

            metrics.increment_gateway_attempt("retry")
            delay = backoff_delay(attempt)
            logger.info(
                "gateway_retry payout=%s attempt=%s/%s code=%s sleep_s=%s",
                payout.id,
                attempt,
                max_attempts,
                exc.code,
                delay,
            )
            sleep(delay)
            continue

        metrics.increment_gateway_attempt("ok")
        return result.as_outcome()


def handle_claimed(claimed: ClaimedPayout, gateway, *, sleep: Callable[[float], None] = time.sleep) -> Optional[PayoutRecord]:
    """
    The gateway call runs outside any transaction; the outcome is reported in
    a new one, guarded by the lease token. Returns None if the lease was lost.
    """
    payout = claimed.payout
    # worker log lines carry the payout id where HTTP ones carry the request id
    set_request_id(f"payout-{payout.id}")
    try:
        with get_conn() as conn:
            recipient_id = repository.find_recipient_id(
                conn,
                creator_id=payout.creator_id,
                account_number=payout.recipient.account_number,
                currency=payout.currency,
            )

        outcome = call_with_retries(gateway, payout, recipient_id=recipient_id, sleep=sleep)

        try:
            with get_conn() as conn:
                record = dispatcher.report_outcome(conn, payout.id, outcome, lease_token=claimed.lease.token)
        except LeaseLostError:
            logger.warning("lease_lost payout=%s outcome=%s discarded", payout.id, type(outcome).__name__)
            return None

        logger.info("payout=%s -> %s", payout.id, record.status)
        return record
    finally:
        set_request_id(None)


def reclaim_once(*, limit: int = 100) -> int:
    with get_conn() as conn:
        reclaimed = dispatcher.reclaim_expired(conn, limit=limit)
    if reclaimed:
        logger.info("reclaimed_expired_leases count=%s", len(reclaimed))
    return len(reclaimed)


def process_once(*, batch_size: Optional[int] = None, gateway=None, threads: Optional[int] = None) -> int:
    batch_size = int(batch_size or settings.WORKER_BATCH_SIZE)
    threads = int(threads or settings.WORKER_THREADS)

    reclaim_once()

    with get_conn() as conn:
        claimed = dispatcher.claim(conn, batch_size)

    logger.info("found_claimed=%s", len(claimed))
    if not claimed:
        return 0

    gateway = gateway or get_gateway()
    with ThreadPoolExecutor(max_workers=max(1, min(threads, len(claimed))), thread_name_prefix="payout") as pool:
        futures = {pool.submit(handle_claimed, c, gateway): c for c in claimed}
        for fut in as_completed(futures):
            try:
                fut.result()
            except Exception:
                # the lease expires and the record is reclaimed on a later pass
                logger.exception("payout_worker_error payout=%s", futures[fut].payout.id)

    return len(claimed)


def run_forever(
    *,
    poll_seconds: Optional[float] = None,
    batch_size: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
) -> None:
    poll_seconds = float(poll_seconds if poll_seconds is not None else settings.WORKER_POLL_SECONDS)
    stop_event = stop_event or threading.Event()
    logger.info("payout worker started threads=%s batch=%s", settings.WORKER_THREADS, batch_size or settings.WORKER_BATCH_SIZE)
    while not stop_event.is_set():
        n = process_once(batch_size=batch_size)
        if n == 0:
            stop_event.wait(poll_seconds)


if __name__ == "__main__":
    configure_logging()
    run_forever()
