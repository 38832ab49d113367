# services/transfer_sync.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from app.payouts import repository
from app.payouts.model import PROCESSING
from app.providers.base import GatewayError
from app.providers.factory import get_gateway
from db import get_conn
from services import metrics
from services.webhook_reconcile import OUTCOME_NOOP, Delivery, apply_delivery, map_wise_state, record_event
from settings import settings

logger = logging.getLogger("payouts.sync")

PROVIDER = "wise_sync"
EVENT_TYPE = "transfer_status_poll"

OUTCOME_IN_FLIGHT = "in_flight"
OUTCOME_GATEWAY_ERROR = "gateway_error"


def sync_transfer(gateway, row: dict[str, Any]) -> str:
    """
    Ask the rail where one accepted transfer stands and feed a settled state
    through the same path a webhook takes. Returns the outcome label.
    """
    transfer_id = str(row["provider_transfer_id"])
    try:
        status = gateway.get_transfer_status(transfer_id)
    except GatewayError as exc:
        logger.warning(
            "transfer_sync_failed payout=%s transfer=%s code=%s status=%s",
            row["id"],
            transfer_id,
            exc.code,
            exc.status_code,
        )
        metrics.increment_transfer_sync(OUTCOME_GATEWAY_ERROR)
        return OUTCOME_GATEWAY_ERROR

    mapped, error_code, error_message = map_wise_state(status.state)
    if mapped == PROCESSING:
        # still moving on the rail; nothing to record yet
        metrics.increment_transfer_sync(OUTCOME_IN_FLIGHT)
        return OUTCOME_IN_FLIGHT

    delivery = Delivery(
        provider_transfer_id=transfer_id,
        status=mapped,
        status_raw=status.state,
        error_code=error_code,
        error_message=error_message,
        event_type=EVENT_TYPE,
    )
    with get_conn() as conn:
        result = apply_delivery(conn, delivery)
        if result.outcome != OUTCOME_NOOP:
            record_event(
                conn,
                provider=PROVIDER,
                payload=status.response or {},
                signature_valid=True,
                outcome=result.outcome,
                delivery=delivery,
                result=result,
            )
    metrics.increment_transfer_sync(result.outcome)
    return result.outcome


def sync_once(*, gateway=None, lookback_days: Optional[int] = None, batch_size: Optional[int] = None) -> dict[str, int]:
    """One pass over every candidate in the lookback window. Returns counts per outcome."""
    gateway = gateway or get_gateway()
    lookback_days = int(lookback_days or settings.TRANSFER_SYNC_LOOKBACK_DAYS)
    batch_size = int(batch_size or settings.TRANSFER_SYNC_BATCH_SIZE)
    since = datetime.now(timezone.utc) - timedelta(days=lookback_days)

    counts: dict[str, int] = {}
    after_id = None
    while True:
        with get_conn() as conn:
            rows = repository.transfers_to_sync(conn, since=since, after_id=after_id, limit=batch_size)
        for row in rows:
            outcome = sync_transfer(gateway, row)
            counts[outcome] = counts.get(outcome, 0) + 1
        if len(rows) < batch_size:
            break
        after_id = rows[-1]["id"]

    logger.info("transfer_sync_pass checked=%s outcomes=%s", sum(counts.values()), counts)
    return counts
