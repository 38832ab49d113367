# routes/webhooks.py
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from db import get_conn
from schemas import WebhookAck
from services import webhook_reconcile
from services.observability import get_request_id

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("payouts.webhooks")

PROVIDER = "wise"


def _signature_header(req: Request) -> str | None:
    return req.headers.get("X-Signature-SHA256") or req.headers.get("X-Signature")


def _resolve_request_id(req: Request) -> str | None:
    return get_request_id() or getattr(req.state, "request_id", None)


def _record_rejected(payload: Any, *, outcome: str, signature_valid: bool, request_id: str | None) -> None:
    with get_conn() as conn:
        webhook_reconcile.record_event(
            conn,
            provider=PROVIDER,
            payload=payload,
            signature_valid=signature_valid,
            outcome=outcome,
            request_id=request_id,
        )


@router.post("/wise", response_model=WebhookAck)
async def wise_webhook(req: Request):
    raw = await req.body()
    sig_header = _signature_header(req)
    request_id = _resolve_request_id(req)

    try:
        payload: Any = json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, ValueError):
        payload = None

    sig_ok, sig_err = webhook_reconcile.verify_signature(
        raw=raw,
        signature_header=sig_header,
        secret=webhook_reconcile.webhook_secret(),
    )

    # deployment misconfiguration, not the sender's fault
    if sig_err == "WEBHOOK_SECRET_NOT_CONFIGURED":
        logger.error("webhook_rejected request_id=%s reason=%s", request_id, sig_err)
        raise HTTPException(status_code=500, detail={"error": sig_err, "provider": PROVIDER})

    if not sig_ok:
        logger.warning(
            "webhook_rejected request_id=%s reason=%s signature=%s",
            request_id,
            sig_err,
            "present" if sig_header else "missing",
        )
        _record_rejected(payload, outcome=sig_err.lower(), signature_valid=False, request_id=request_id)
        raise HTTPException(status_code=401, detail={"error": sig_err, "provider": PROVIDER})

    if payload is None:
        _record_rejected(None, outcome="malformed_json", signature_valid=True, request_id=request_id)
        raise HTTPException(status_code=400, detail={"error": "MALFORMED_JSON", "provider": PROVIDER})

    try:
        delivery = webhook_reconcile.parse_delivery(payload)
    except webhook_reconcile.MalformedDeliveryError as exc:
        logger.warning("webhook_malformed request_id=%s error=%s", request_id, exc)
        _record_rejected(payload, outcome="malformed_payload", signature_valid=True, request_id=request_id)
        raise HTTPException(status_code=400, detail={"error": "MALFORMED_PAYLOAD", "message": str(exc)})

    with get_conn() as conn:
        result = webhook_reconcile.apply_delivery(conn, delivery)
        webhook_reconcile.record_event(
            conn,
            provider=PROVIDER,
            payload=payload,
            signature_valid=True,
            outcome=result.outcome,
            delivery=delivery,
            result=result,
            request_id=request_id,
        )

    return WebhookAck(
        outcome=result.outcome,
        payout_id=result.payout_id,
        status_before=result.status_before,
        status_after=result.status_after,
    )
