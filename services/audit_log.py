# services/audit_log.py
from __future__ import annotations

import logging
from typing import Any

from psycopg2.extras import Json, RealDictCursor

from services.observability import get_request_id
from services.redaction import redact_dict

logger = logging.getLogger("payouts.audit")


def write_audit_log(
    conn,
    *,
    actor: str,
    action: str,
    target_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Admin actions that sit outside the payout state machine (soft delete, manual reclaim)."""
    request_id = get_request_id()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.audit_log (actor, action, target_id, request_id, metadata)
            VALUES (%s, %s, %s, %s, %s::jsonb);
            """,
            (actor, action, target_id, request_id, Json(redact_dict(metadata or {}))),
        )
    logger.info("AUDIT actor=%s action=%s target=%s request_id=%s", actor, action, target_id or "-", request_id or "-")


def entries_for(conn, target_id: str) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT actor, action, target_id, request_id, metadata, created_at
            FROM app.audit_log
            WHERE target_id = %s
            ORDER BY created_at, id
            """,
            (target_id,),
        )
        return [dict(r) for r in cur.fetchall()]
