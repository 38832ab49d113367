# routes/admin_payouts.py
from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.payouts import dispatcher, repository
from db import get_conn
from deps.admin import require_admin
from schemas import (
    CreatorCurrencyStats,
    CreatorStatsOut,
    PayoutListOut,
    PayoutOut,
    PendingSummaryItem,
    ReclaimOut,
)
from services import aggregates, audit_log
from services.audit_log import write_audit_log

logger = logging.getLogger("payouts")
router = APIRouter(prefix="/v1/admin/payouts", tags=["admin"], dependencies=[Depends(require_admin)])


@router.delete("/{payout_id}", response_model=PayoutOut)
def soft_delete_payout(payout_id: UUID, actor: str = Depends(require_admin)):
    """Hide a payout from every active read path. History is kept."""
    with get_conn() as conn:
        record = repository.soft_delete(conn, payout_id)
        write_audit_log(
            conn,
            actor=actor,
            action="payout.soft_delete",
            target_id=str(payout_id),
            metadata={"status": record.status, "reference": record.reference},
        )
    logger.info("payout_soft_deleted payout=%s status=%s", payout_id, record.status)
    return PayoutOut.from_record(record)


@router.get("/recent-successful", response_model=PayoutListOut)
def recent_successful(
    days: Optional[int] = Query(default=None, ge=1, le=365),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=repository.MAX_PAGE_LIMIT),
):
    with get_conn() as conn:
        result = aggregates.recent_successful(conn, days=days, page=page, limit=limit)
    return PayoutListOut(
        items=[PayoutOut.from_record(r) for r in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.get("/pending-summary", response_model=List[PendingSummaryItem])
def pending_summary():
    with get_conn() as conn:
        rows = aggregates.pending_summary(conn)
    return [PendingSummaryItem(**r) for r in rows]


@router.get("/creators/{creator_id}/stats", response_model=CreatorStatsOut)
def creator_stats(creator_id: UUID):
    with get_conn() as conn:
        rows = aggregates.creator_stats(conn, creator_id)
    return CreatorStatsOut(
        creator_id=creator_id,
        by_currency=[CreatorCurrencyStats(**r) for r in rows],
    )


@router.post("/reclaim-expired", response_model=ReclaimOut)
def reclaim_expired(
    limit: int = Query(default=100, ge=1, le=1000),
    actor: str = Depends(require_admin),
):
    with get_conn() as conn:
        records = dispatcher.reclaim_expired(conn, limit=limit)
        if records:
            write_audit_log(
                conn,
                actor=actor,
                action="payout.reclaim_expired",
                target_id=None,
                metadata={"payout_ids": [str(r.id) for r in records]},
            )
    return ReclaimOut(reclaimed=len(records), payouts=[PayoutOut.from_record(r) for r in records])


@router.get("/{payout_id}/audit")
def payout_audit_trail(payout_id: UUID):
    """Admin actions recorded against one payout, soft-deleted ones included."""
    with get_conn() as conn:
        entries = audit_log.entries_for(conn, str(payout_id))
    return {"payout_id": str(payout_id), "entries": entries}
