# app/payouts/state_machine.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from app.payouts.errors import InvalidTransitionError
from app.payouts.model import (
    CANCELLED,
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    REFUNDED,
    Lease,
)

ALLOWED = {
    PENDING: {PROCESSING, CANCELLED},
    PROCESSING: {COMPLETED, FAILED},
    COMPLETED: {REFUNDED},
    FAILED: set(),
    CANCELLED: set(),
    REFUNDED: set(),
}

TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)

# Only the dispatcher may take this edge, and only when a lease ran out.
REASON_LEASE_EXPIRED = "lease_expired"
REASON_CREATED = "created"
SYSTEM_TRANSITIONS = {
    (PROCESSING, PENDING): REASON_LEASE_EXPIRED,
}

DEFAULT_FAILURE_CODE = "UNKNOWN_ERROR"

# detail columns a transition may carry in (never cleared once set)
DETAIL_COLUMNS = (
    "provider_transfer_id",
    "provider_recipient_id",
    "provider_quote_id",
    "provider_fee",
    "exchange_rate",
    "source_amount",
    "source_currency",
    "provider_response",
)


def is_allowed(old: str, new: str, *, reason: Optional[str] = None) -> bool:
    if new in ALLOWED.get(old, set()):
        return True
    required_reason = SYSTEM_TRANSITIONS.get((old, new))
    return required_reason is not None and reason == required_reason


def assert_transition(old: str, new: str, *, reason: Optional[str] = None) -> None:
    if not is_allowed(old, new, reason=reason):
        raise InvalidTransitionError(old, new)


@dataclass(frozen=True)
class TransitionPlan:
    from_status: str
    to_status: str
    at: datetime
    changes: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    reason: Optional[str] = None


def plan_transition(
    current: Mapping[str, Any],
    to_status: str,
    *,
    at: datetime,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    reason: Optional[str] = None,
    lease: Optional[Lease] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> TransitionPlan:
    """
    Compute every column a status change touches. This is the one place
    derived fields (completed_at, failed_at, error fields, lease) are decided.
    Raises InvalidTransitionError without side effects when the edge is illegal.
    """
    from_status = current["status"]
    assert_transition(from_status, to_status, reason=reason)

    changes: dict[str, Any] = {
        "status": to_status,
        "updated_at": at,
    }

    if to_status == FAILED:
        error_code = (error_code or "").strip() or DEFAULT_FAILURE_CODE
        error_message = error_message or error_code
        changes["error_code"] = error_code
        changes["error_message"] = error_message
        if current.get("failed_at") is None:
            changes["failed_at"] = at
    else:
        # error fields describe only the latest transition, and only a failure
        changes["error_code"] = None
        changes["error_message"] = None
        error_code = None
        error_message = None

    if to_status == COMPLETED and current.get("completed_at") is None:
        changes["completed_at"] = at

    if to_status == PROCESSING:
        if lease is None:
            raise ValueError("entering processing requires a lease")
        changes["lease_token"] = lease.token
        changes["lease_expires_at"] = lease.expires_at
        changes["attempt_count"] = int(current.get("attempt_count") or 0) + 1
    elif from_status == PROCESSING:
        changes["lease_token"] = None
        changes["lease_expires_at"] = None

    for key, value in (details or {}).items():
        if key not in DETAIL_COLUMNS:
            raise ValueError(f"unknown transition detail: {key}")
        if value is not None:
            changes[key] = value

    return TransitionPlan(
        from_status=from_status,
        to_status=to_status,
        at=at,
        changes=changes,
        error_code=error_code,
        error_message=error_message,
        reason=reason,
    )
