from __future__ import annotations

import argparse
from uuid import UUID

from app.payouts.repository import MAX_PAGE_LIMIT
from db import close_pool, get_conn
from services.aggregates import creator_stats, pending_summary, recent_successful
from services.observability import configure_logging


def _all_recent(conn, days: int) -> list:
    items = []
    page = 1
    while True:
        result = recent_successful(conn, days=days, page=page, limit=MAX_PAGE_LIMIT)
        items.extend(result.items)
        if len(items) >= result.total or not result.items:
            return items
        page += 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Print payout ledger summaries.")
    parser.add_argument("--creator", type=UUID, default=None, help="also print stats for this creator id")
    parser.add_argument("--recent-days", type=int, default=None, help="also list completed payouts from the last N days")
    args = parser.parse_args()

    configure_logging()
    try:
        with get_conn() as conn:
            rows = pending_summary(conn)
            stats = creator_stats(conn, args.creator) if args.creator else None
            recent = _all_recent(conn, args.recent_days) if args.recent_days else None
    finally:
        close_pool()

    print("pending:")
    if not rows:
        print("  (none)")
    for r in rows:
        print(
            f"  {r['currency']}",
            f"count={r['pending_count']}",
            f"total={r['total_amount']}",
            f"oldest={r['oldest_created_at'].isoformat()}",
            f"newest={r['newest_created_at'].isoformat()}",
        )

    if stats is not None:
        print(f"creator {args.creator}:")
        for s in stats:
            counts = " ".join(f"{k}={v}" for k, v in s["counts"].items() if v)
            last = s["last_payout_at"].isoformat() if s["last_payout_at"] else "-"
            print(f"  {s['currency']} paid_out={s['total_paid_out']} last={last} {counts}")

    if recent is not None:
        print(f"completed in the last {args.recent_days} days: {len(recent)}")
        for p in recent:
            print(f"  {p.id} {p.currency} {p.amount} completed_at={p.completed_at.isoformat()}")


if __name__ == "__main__":
    main()
