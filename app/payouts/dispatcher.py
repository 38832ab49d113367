# app/payouts/dispatcher.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from app.payouts import repository
from app.payouts.errors import LeaseLostError, NotFoundError
from app.payouts.model import (
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    ClaimedPayout,
    Completed,
    Failed,
    Lease,
    Outcome,
    PayoutRecord,
)
from app.payouts.state_machine import REASON_LEASE_EXPIRED
from app.payouts.transitions import transition_locked
from services import metrics
from settings import settings

logger = logging.getLogger("payouts")

REASON_CLAIMED = "claimed"
REASON_GATEWAY_ACCEPTED = "gateway_accepted"
REASON_GATEWAY_FAILED = "gateway_failed"
LEASE_EXPIRED_MAX_ATTEMPTS = "LEASE_EXPIRED_MAX_ATTEMPTS"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_lease(lease_seconds: Optional[int] = None, *, now: Optional[datetime] = None) -> Lease:
    seconds = int(lease_seconds or settings.PAYOUT_LEASE_SECONDS)
    return Lease(token=uuid.uuid4(), expires_at=(now or _utcnow()) + timedelta(seconds=seconds))


def claim(conn, max_batch: int, *, lease_seconds: Optional[int] = None) -> list[ClaimedPayout]:
    """
    Lock up to ``max_batch`` of the oldest pending records (SKIP LOCKED) and
    move each to processing under a fresh lease, inside the caller's
    transaction. Concurrent callers never see the same row.
    """
    if max_batch <= 0:
        return []
    lease_seconds = int(lease_seconds or settings.PAYOUT_LEASE_SECONDS)
    now = _utcnow()

    rows = repository.lock_pending_batch(conn, batch_size=max_batch)
    leases: dict[UUID, Lease] = {}
    updated_rows = []
    for row in rows:
        lease = new_lease(lease_seconds, now=now)
        updated_rows.append(
            transition_locked(conn, row, PROCESSING, reason=REASON_CLAIMED, lease=lease, at=now)
        )
        leases[row["id"]] = lease

    metrics.increment_claims(conn, len(updated_rows))
    if updated_rows:
        logger.info("payout_claim count=%s lease_seconds=%s", len(updated_rows), lease_seconds)

    return [
        ClaimedPayout(payout=record, lease=leases[record.id])
        for record in repository.hydrate(conn, updated_rows)
    ]


def reclaim_expired(
    conn,
    *,
    limit: int = 100,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[PayoutRecord]:
    """
    Return processing records whose lease ran out to pending. A record that
    already used ``max_attempts`` claims is failed instead of being requeued.
    """
    max_attempts = int(max_attempts or settings.PAYOUT_MAX_CLAIM_ATTEMPTS)
    now = now or _utcnow()

    rows = repository.lock_expired_leases(conn, batch_size=limit, now=now)
    updated_rows = []
    for row in rows:
        attempts = int(row.get("attempt_count") or 0)
        if attempts >= max_attempts:
            updated = transition_locked(
                conn,
                row,
                FAILED,
                error_code=LEASE_EXPIRED_MAX_ATTEMPTS,
                error_message=f"Lease expired after {attempts} attempts",
                reason=REASON_LEASE_EXPIRED,
                at=now,
            )
            metrics.increment_lease_reclaimed(conn, FAILED)
        else:
            updated = transition_locked(conn, row, PENDING, reason=REASON_LEASE_EXPIRED, at=now)
            metrics.increment_lease_reclaimed(conn, PENDING)
        logger.warning(
            "payout_lease_expired payout=%s attempts=%s -> %s",
            row["id"],
            attempts,
            updated["status"],
        )
        updated_rows.append(updated)

    return repository.hydrate(conn, updated_rows)


def report_outcome(
    conn,
    payout_id: UUID,
    outcome: Outcome,
    *,
    lease_token: Optional[UUID] = None,
) -> PayoutRecord:
    """
    Record the gateway result for a claimed payout. With ``lease_token`` the
    caller must still hold the lease; otherwise LeaseLostError is raised and
    the record is left as it is.
    """
    row = repository.lock_active(conn, payout_id)
    if row is None:
        raise NotFoundError(f"Payout {payout_id} not found")

    if lease_token is not None:
        if row["status"] != PROCESSING or str(row.get("lease_token")) != str(lease_token):
            logger.warning(
                "payout_lease_lost payout=%s status=%s",
                payout_id,
                row["status"],
            )
            raise LeaseLostError(f"Lease on payout {payout_id} is no longer held")

    if isinstance(outcome, Completed):
        transition_locked(
            conn,
            row,
            COMPLETED,
            reason=REASON_GATEWAY_ACCEPTED,
            details={
                "provider_transfer_id": outcome.provider_transfer_id,
                "provider_fee": outcome.fee,
                "exchange_rate": outcome.exchange_rate,
                "source_amount": outcome.source_amount,
                "source_currency": outcome.source_currency,
                "provider_recipient_id": outcome.provider_recipient_id,
                "provider_quote_id": outcome.provider_quote_id,
                "provider_response": outcome.provider_response,
            },
        )
    elif isinstance(outcome, Failed):
        transition_locked(
            conn,
            row,
            FAILED,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            reason=REASON_GATEWAY_FAILED,
            details={"provider_response": outcome.provider_response},
        )
    else:
        raise TypeError(f"unsupported outcome: {outcome!r}")

    return repository.get(conn, payout_id)
