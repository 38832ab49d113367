# app/payouts/audit.py
"""
Status history writer.

Rows in app.payout_status_history are only ever inserted: once for the
creation of a payout and once for every transition the engine accepts.
The table trigger refuses UPDATE and DELETE.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.payouts.model import PENDING, StatusHistoryEntry, history_from_row
from app.payouts.state_machine import REASON_CREATED, TransitionPlan

logger = logging.getLogger("payouts.audit")


def record_creation(cur, *, payout_id: UUID, at: datetime) -> None:
    cur.execute(
        """
        INSERT INTO app.payout_status_history (payout_id, from_status, status, occurred_at, reason)
        VALUES (%s, NULL, %s, %s, %s)
        """,
        (payout_id, PENDING, at, REASON_CREATED),
    )


def record_transition(cur, *, payout_id: UUID, plan: TransitionPlan) -> None:
    cur.execute(
        """
        INSERT INTO app.payout_status_history
          (payout_id, from_status, status, occurred_at, error_code, error_message, reason)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (
            payout_id,
            plan.from_status,
            plan.to_status,
            plan.at,
            plan.error_code,
            plan.error_message,
            plan.reason,
        ),
    )
    logger.info(
        "AUDIT payout=%s %s->%s reason=%s error_code=%s",
        payout_id,
        plan.from_status,
        plan.to_status,
        plan.reason or "-",
        plan.error_code or "-",
    )


def load_history(conn, payout_ids: Iterable[UUID]) -> dict[UUID, list[StatusHistoryEntry]]:
    ids = list(payout_ids)
    out: dict[UUID, list[StatusHistoryEntry]] = {pid: [] for pid in ids}
    if not ids:
        return out
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT seq, payout_id, from_status, status, occurred_at, error_code, error_message, reason
            FROM app.payout_status_history
            WHERE payout_id = ANY(%s::uuid[])
            ORDER BY payout_id, seq
            """,
            ([str(i) for i in ids],),
        )
        for row in cur.fetchall():
            out.setdefault(row["payout_id"], []).append(history_from_row(row))
    return out
