from __future__ import annotations

import dataclasses
import logging

from psycopg2.extensions import connection as PGConn

from app.payouts import repository
from app.payouts.model import PayoutRecord, PayoutRequest
from services import metrics

logger = logging.getLogger("payouts")


@dataclasses.dataclass(frozen=True)
class SubmitResult:
    payout: PayoutRecord
    created: bool


def submit(conn: PGConn, reference: str, request: PayoutRequest) -> SubmitResult:
    """
    At most one active payout per reference. The insert and the conflict
    check are one statement (ON CONFLICT DO NOTHING on the partial unique
    index), so concurrent retries of the same request collapse onto the
    first committed row. A replay returns the stored record unchanged even
    when the replayed body differs.
    """
    if request.reference != reference:
        request = dataclasses.replace(request, reference=reference)

    payout, created = repository.insert_or_get(conn, request)
    if not created:
        metrics.increment_idempotency_replay()
        logger.info("idempotency_replay reference=%s payout=%s", reference, payout.id)
    return SubmitResult(payout=payout, created=created)
