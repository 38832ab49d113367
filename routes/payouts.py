# routes/payouts.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from app.payouts import repository, transitions
from db import get_conn
from schemas import PayoutCreateRequest, PayoutListOut, PayoutOut, PayoutStatus
from services import idempotency

logger = logging.getLogger("payouts")
router = APIRouter(prefix="/v1", tags=["payouts"])


@router.post("/payouts", response_model=PayoutOut, status_code=status.HTTP_201_CREATED)
def create_payout(body: PayoutCreateRequest, response: Response):
    """
    Initiate a payout. Replaying a reference returns the original record
    unchanged with 200 instead of 201.
    """
    request = body.to_request()

    with get_conn() as conn:
        result = idempotency.submit(conn, request.reference, request)

    if not result.created:
        response.status_code = status.HTTP_200_OK
    logger.info(
        "payout_initiated payout=%s reference=%s created=%s",
        result.payout.id,
        result.payout.reference,
        result.created,
    )
    return PayoutOut.from_record(result.payout)


@router.get("/payouts", response_model=PayoutListOut)
def list_payouts(
    creator_id: Optional[UUID] = None,
    status_filter: Optional[PayoutStatus] = Query(default=None, alias="status"),
    currency: Optional[str] = Query(default=None, min_length=3, max_length=3),
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=repository.MAX_PAGE_LIMIT),
    order: Literal["desc", "asc"] = "desc",
):
    with get_conn() as conn:
        result = repository.list_payouts(
            conn,
            creator_id=creator_id,
            status=status_filter,
            currency=currency,
            created_from=created_from,
            created_to=created_to,
            page=page,
            limit=limit,
            ascending=(order == "asc"),
        )
    return PayoutListOut(
        items=[PayoutOut.from_record(r) for r in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.get("/payouts/{payout_id}", response_model=PayoutOut)
def get_payout(payout_id: UUID):
    with get_conn() as conn:
        record = repository.get(conn, payout_id)
    return PayoutOut.from_record(record)


@router.post("/payouts/{payout_id}/cancel", response_model=PayoutOut)
def cancel_payout(payout_id: UUID):
    with get_conn() as conn:
        record = transitions.cancel(conn, payout_id)
    return PayoutOut.from_record(record)
