# services/webhook_reconcile.py
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import UUID

from psycopg2.extras import Json

from app.payouts import repository
from app.payouts.dispatcher import new_lease
from app.payouts.errors import InvalidTransitionError
from app.payouts.model import (
    CANCELLED,
    COMPLETED,
    FAILED,
    PROCESSING,
    REFUNDED,
    STATUSES,
)
from app.payouts.transitions import transition_locked
from services import metrics
from services.redaction import redact_dict
from settings import settings

logger = logging.getLogger("payouts.webhooks")

OUTCOME_APPLIED = "applied"
OUTCOME_NOOP = "noop_same_status"
OUTCOME_REJECTED = "rejected_invalid_transition"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_UNKNOWN_STATE = "ignored_unknown_state"

REASON_WEBHOOK = "webhook"

# Wise transfer states -> ledger status
WISE_STATE_MAP = {
    "incoming_payment_waiting": PROCESSING,
    "processing": PROCESSING,
    "funds_converted": PROCESSING,
    "outgoing_payment_sent": COMPLETED,
    "bounced_back": FAILED,
    "charged_back": FAILED,
    "cancelled": CANCELLED,
    "funds_refunded": REFUNDED,
}


# column widths in app.creator_payouts / app.payout_status_history
MAX_TRANSFER_ID = 255
MAX_ERROR_CODE = 50


class MalformedDeliveryError(ValueError):
    pass


@dataclass(frozen=True)
class Delivery:
    provider_transfer_id: str
    status: Optional[str]
    status_raw: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    event_type: Optional[str] = None


@dataclass(frozen=True)
class DeliveryResult:
    outcome: str
    payout_id: Optional[UUID] = None
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    detail: Optional[str] = None


def verify_signature(*, raw: bytes, signature_header: str | None, secret: str | None) -> tuple[bool, str | None]:
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, sig.lower()):
        return False, "INVALID_SIGNATURE"

    return True, None


def map_wise_state(state: str) -> tuple[Optional[str], Optional[str], Optional[str]]:
    """Return (status, error_code, error_message) for a Wise transfer state."""
    key = (state or "").strip().lower()
    status = WISE_STATE_MAP.get(key)
    if status == FAILED:
        return status, key.upper(), f"Wise transfer {key.replace('_', ' ')}"
    return status, None, None


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return value
    return None


def _bounded(value: Any, field: str, max_len: int) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_len:
        raise MalformedDeliveryError(f"{field} longer than {max_len} characters")
    return text


def parse_delivery(payload: Any) -> Delivery:
    """
    Accepts Wise's ``transfers#state-change`` event or the normalized
    ``{providerTransferId, status, errorCode?, errorMessage?}`` shape.
    """
    if not isinstance(payload, Mapping):
        raise MalformedDeliveryError("payload must be a JSON object")

    data = payload.get("data")
    if isinstance(data, Mapping) and ("current_state" in data or "resource" in data):
        resource = data.get("resource") if isinstance(data.get("resource"), Mapping) else {}
        transfer_id = _first(resource, "id")
        state = str(data.get("current_state") or "").strip()
        if transfer_id is None or not state:
            raise MalformedDeliveryError("Wise event without resource id or current_state")
        status, error_code, error_message = map_wise_state(state)
        return Delivery(
            provider_transfer_id=_bounded(transfer_id, "resource.id", MAX_TRANSFER_ID),
            status=status,
            status_raw=state,
            error_code=error_code,
            error_message=error_message,
            event_type=payload.get("event_type"),
        )

    transfer_id = _first(payload, "providerTransferId", "provider_transfer_id")
    status_raw = str(payload.get("status") or "").strip()
    if transfer_id is None or not status_raw:
        raise MalformedDeliveryError("providerTransferId and status are required")
    status = status_raw.lower()
    if status not in STATUSES:
        raise MalformedDeliveryError(f"unknown status {status_raw!r}")
    return Delivery(
        provider_transfer_id=_bounded(transfer_id, "providerTransferId", MAX_TRANSFER_ID),
        status=status,
        status_raw=status_raw,
        error_code=_bounded(_first(payload, "errorCode", "error_code"), "errorCode", MAX_ERROR_CODE),
        error_message=_first(payload, "errorMessage", "error_message"),
        event_type=payload.get("event_type"),
    )


def apply_delivery(conn, delivery: Delivery) -> DeliveryResult:
    """
    Route one delivery through the transition engine. Safe to repeat: a
    delivery whose status the record already has changes nothing and
    appends no history. An edge outside the graph is rejected and logged.
    """
    if delivery.status is None:
        result = DeliveryResult(outcome=OUTCOME_UNKNOWN_STATE, detail=delivery.status_raw)
        _log_result(delivery, result)
        return result

    row = repository.lock_by_provider_transfer_id(conn, delivery.provider_transfer_id)
    if row is None:
        result = DeliveryResult(outcome=OUTCOME_NOT_FOUND)
        _log_result(delivery, result)
        return result

    before = row["status"]
    if before == delivery.status:
        result = DeliveryResult(outcome=OUTCOME_NOOP, payout_id=row["id"], status_before=before, status_after=before)
        _log_result(delivery, result)
        return result

    lease = new_lease() if delivery.status == PROCESSING else None

    try:
        updated = transition_locked(
            conn,
            row,
            delivery.status,
            error_code=delivery.error_code,
            error_message=delivery.error_message,
            reason=REASON_WEBHOOK,
            lease=lease,
        )
    except InvalidTransitionError as exc:
        result = DeliveryResult(
            outcome=OUTCOME_REJECTED,
            payout_id=row["id"],
            status_before=before,
            status_after=before,
            detail=exc.message,
        )
        _log_result(delivery, result)
        return result

    result = DeliveryResult(
        outcome=OUTCOME_APPLIED,
        payout_id=row["id"],
        status_before=before,
        status_after=updated["status"],
    )
    _log_result(delivery, result)
    return result


def _log_result(delivery: Delivery, result: DeliveryResult) -> None:
    metrics.increment_webhook_delivery(result.outcome)
    level = logging.WARNING if result.outcome in (OUTCOME_REJECTED, OUTCOME_NOT_FOUND) else logging.INFO
    logger.log(
        level,
        "webhook_delivery transfer=%s status_raw=%s outcome=%s payout=%s before=%s after=%s detail=%s",
        delivery.provider_transfer_id,
        delivery.status_raw,
        result.outcome,
        result.payout_id,
        result.status_before,
        result.status_after,
        result.detail or "-",
    )


def record_event(
    conn,
    *,
    provider: str,
    payload: Any,
    signature_valid: bool,
    outcome: str,
    delivery: Optional[Delivery] = None,
    result: Optional[DeliveryResult] = None,
    request_id: Optional[str] = None,
) -> None:
    """Store one row per delivery in app.webhook_events (payload redacted)."""
    stored = redact_dict(dict(payload)) if isinstance(payload, Mapping) else {}
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.webhook_events (
              provider, event_type, provider_transfer_id, status_raw, mapped_status,
              payout_id, payout_status_before, payout_status_after,
              outcome, signature_valid, request_id, payload
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb)
            """,
            (
                provider,
                delivery.event_type if delivery else None,
                delivery.provider_transfer_id if delivery else None,
                delivery.status_raw if delivery else None,
                delivery.status if delivery else None,
                result.payout_id if result else None,
                result.status_before if result else None,
                result.status_after if result else None,
                outcome,
                bool(signature_valid),
                request_id,
                Json(stored),
            ),
        )


def webhook_secret() -> str:
    return settings.WISE_WEBHOOK_SECRET or ""
