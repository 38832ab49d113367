# services/aggregates.py
"""
Read-only summaries computed at query time over app.creator_payouts.
Nothing here is cached or incrementally maintained; every call reflects
the ledger as committed at the moment of the query.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.payouts import repository
from app.payouts.model import STATUSES, PayoutPage
from settings import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def recent_successful(
    conn,
    *,
    days: Optional[int] = None,
    page: int = 1,
    limit: int = 100,
    now: Optional[datetime] = None,
) -> PayoutPage:
    """
    Completed payouts from the last ``days`` days, newest first. ``total``
    counts the whole window so callers can page past ``limit``.
    """
    days = int(days or settings.PAYOUT_RECENT_SUCCESS_DAYS)
    page = max(1, int(page))
    limit = max(1, min(int(limit), repository.MAX_PAGE_LIMIT))
    since = (now or _utcnow()) - timedelta(days=days)
    where = "status = 'completed' AND deleted_at IS NULL AND completed_at >= %s"
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT COUNT(*) AS n FROM app.creator_payouts WHERE {where}", (since,))
        total = int(cur.fetchone()["n"])
        cur.execute(
            f"""
            SELECT *
            FROM app.creator_payouts
            WHERE {where}
            ORDER BY completed_at DESC, id
            LIMIT %s OFFSET %s
            """,
            (since, limit, (page - 1) * limit),
        )
        rows = [dict(r) for r in cur.fetchall()]
    return PayoutPage(items=repository.hydrate(conn, rows), page=page, limit=limit, total=total)


def pending_summary(conn) -> list[dict[str, Any]]:
    """Per currency: count, total amount, oldest and newest created_at of pending payouts."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT currency,
                   COUNT(*) AS pending_count,
                   COALESCE(SUM(amount), 0) AS total_amount,
                   MIN(created_at) AS oldest_created_at,
                   MAX(created_at) AS newest_created_at
            FROM app.creator_payouts
            WHERE status = 'pending'
              AND deleted_at IS NULL
            GROUP BY currency
            ORDER BY currency
            """
        )
        rows = cur.fetchall()
    return [
        {
            "currency": r["currency"],
            "pending_count": int(r["pending_count"]),
            "total_amount": Decimal(r["total_amount"]),
            "oldest_created_at": r["oldest_created_at"],
            "newest_created_at": r["newest_created_at"],
        }
        for r in rows
    ]


def creator_stats(conn, creator_id: UUID) -> list[dict[str, Any]]:
    """
    One entry per currency the creator has been paid in: counts by status,
    lifetime completed amount and the last completion time.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT currency,
                   status,
                   COUNT(*) AS n,
                   COALESCE(SUM(amount) FILTER (WHERE status = 'completed'), 0) AS completed_amount,
                   MAX(completed_at) AS last_completed_at
            FROM app.creator_payouts
            WHERE creator_id = %s::uuid
              AND deleted_at IS NULL
            GROUP BY currency, status
            ORDER BY currency, status
            """,
            (str(creator_id),),
        )
        rows = cur.fetchall()

    by_currency: dict[str, dict[str, Any]] = {}
    for r in rows:
        entry = by_currency.setdefault(
            r["currency"],
            {
                "currency": r["currency"],
                "counts": {s: 0 for s in STATUSES},
                "total_payouts": 0,
                "total_paid_out": Decimal("0"),
                "last_payout_at": None,
            },
        )
        entry["counts"][r["status"]] = int(r["n"])
        entry["total_payouts"] += int(r["n"])
        entry["total_paid_out"] += Decimal(r["completed_amount"])
        last = r["last_completed_at"]
        if last is not None and (entry["last_payout_at"] is None or last > entry["last_payout_at"]):
            entry["last_payout_at"] = last

    return list(by_currency.values())
