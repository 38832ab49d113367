# app/payouts/transitions.py
"""
State Machine Engine.

Every status change in the ledger goes through ``transition_locked``:
the caller holds the row lock (SELECT ... FOR UPDATE), the pure planner
decides the new column values, the guarded UPDATE applies them and the
history row is appended in the same transaction. A second writer blocked
on the same lock re-reads the committed status and is judged against it.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import UUID

from app.payouts import repository
from app.payouts.audit import record_transition
from app.payouts.errors import InvalidTransitionError, NotFoundError
from app.payouts.model import CANCELLED, Lease, PayoutRecord
from app.payouts.state_machine import plan_transition
from services import metrics

logger = logging.getLogger("payouts")

REASON_CANCEL_REQUESTED = "cancel_requested"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transition_locked(
    conn,
    row: Mapping[str, Any],
    to_status: str,
    *,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    reason: Optional[str] = None,
    lease: Optional[Lease] = None,
    details: Optional[Mapping[str, Any]] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Apply one transition to a row the caller already holds locked.
    Returns the updated row. Raises InvalidTransitionError and leaves the
    row untouched when the edge is not allowed.
    """
    at = at or _utcnow()
    try:
        plan = plan_transition(
            row,
            to_status,
            at=at,
            error_code=error_code,
            error_message=error_message,
            reason=reason,
            lease=lease,
            details=details,
        )
    except InvalidTransitionError as exc:
        metrics.increment_transition_rejected(exc.from_status, exc.to_status)
        logger.warning(
            "payout_transition_rejected payout=%s from=%s to=%s reason=%s",
            row["id"],
            exc.from_status,
            exc.to_status,
            reason or "-",
        )
        raise

    updated = repository.write_transition(
        conn,
        payout_id=row["id"],
        from_status=plan.from_status,
        changes=plan.changes,
    )
    if updated is None:
        # row lock makes this unreachable unless the caller skipped it
        raise InvalidTransitionError(plan.from_status, plan.to_status)

    with conn.cursor() as cur:
        record_transition(cur, payout_id=row["id"], plan=plan)

    metrics.increment_transition(conn, plan.from_status, plan.to_status)
    return updated


def apply_transition(
    conn,
    payout_id: UUID,
    to_status: str,
    *,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    reason: Optional[str] = None,
    lease: Optional[Lease] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> PayoutRecord:
    row = repository.lock_active(conn, payout_id)
    if row is None:
        raise NotFoundError(f"Payout {payout_id} not found")
    transition_locked(
        conn,
        row,
        to_status,
        error_code=error_code,
        error_message=error_message,
        reason=reason,
        lease=lease,
        details=details,
    )
    return repository.get(conn, payout_id)


def cancel(conn, payout_id: UUID) -> PayoutRecord:
    """pending -> cancelled. Once a worker holds the record this is rejected."""
    return apply_transition(conn, payout_id, CANCELLED, reason=REASON_CANCEL_REQUESTED)
