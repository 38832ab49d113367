from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.payouts.errors import InvalidTransitionError
from app.payouts.model import Lease
from app.payouts.state_machine import (
    ALLOWED,
    REASON_LEASE_EXPIRED,
    assert_transition,
    is_allowed,
    plan_transition,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _row(status: str, **extra):
    row = {
        "id": uuid4(),
        "status": status,
        "attempt_count": 0,
        "completed_at": None,
        "failed_at": None,
        "error_code": None,
        "error_message": None,
    }
    row.update(extra)
    return row


def _lease():
    return Lease(token=uuid4(), expires_at=NOW + timedelta(minutes=5))


def test_valid_transitions():
    assert_transition("pending", "processing")
    assert_transition("pending", "cancelled")
    assert_transition("processing", "completed")
    assert_transition("processing", "failed")
    assert_transition("completed", "refunded")


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransitionError) as exc:
        assert_transition("pending", "completed")
    assert exc.value.from_status == "pending"
    assert exc.value.to_status == "completed"


def test_terminal_states_cannot_transition():
    for terminal in ("failed", "cancelled", "refunded"):
        for target in ALLOWED:
            assert not is_allowed(terminal, target)
    with pytest.raises(InvalidTransitionError):
        assert_transition("completed", "failed")


def test_processing_back_to_pending_only_on_lease_expiry():
    assert not is_allowed("processing", "pending")
    assert not is_allowed("processing", "pending", reason="webhook")
    assert is_allowed("processing", "pending", reason=REASON_LEASE_EXPIRED)
    # the system reason does not open any other edge
    assert not is_allowed("failed", "pending", reason=REASON_LEASE_EXPIRED)


def test_plan_claim_sets_lease_and_counts_attempt():
    lease = _lease()
    plan = plan_transition(_row("pending", attempt_count=2), "processing", at=NOW, lease=lease, reason="claimed")
    assert plan.changes["status"] == "processing"
    assert plan.changes["updated_at"] == NOW
    assert plan.changes["lease_token"] == lease.token
    assert plan.changes["lease_expires_at"] == lease.expires_at
    assert plan.changes["attempt_count"] == 3
    assert plan.error_code is None


def test_plan_processing_requires_lease():
    with pytest.raises(ValueError):
        plan_transition(_row("pending"), "processing", at=NOW)


def test_plan_completed_sets_completed_at_and_clears_lease():
    plan = plan_transition(
        _row("processing", lease_token=uuid4()),
        "completed",
        at=NOW,
        details={"provider_transfer_id": "T1", "provider_fee": None},
    )
    assert plan.changes["completed_at"] == NOW
    assert plan.changes["lease_token"] is None
    assert plan.changes["lease_expires_at"] is None
    assert plan.changes["provider_transfer_id"] == "T1"
    # None details never overwrite stored values
    assert "provider_fee" not in plan.changes
    assert "failed_at" not in plan.changes


def test_plan_failed_records_error_fields_once():
    plan = plan_transition(
        _row("processing"),
        "failed",
        at=NOW,
        error_code="INSUFFICIENT_BALANCE",
        error_message="balance too low",
    )
    assert plan.changes["failed_at"] == NOW
    assert plan.changes["error_code"] == "INSUFFICIENT_BALANCE"
    assert plan.changes["error_message"] == "balance too low"
    assert plan.error_code == "INSUFFICIENT_BALANCE"


def test_plan_failed_defaults_error_code():
    plan = plan_transition(_row("processing"), "failed", at=NOW)
    assert plan.changes["error_code"] == "UNKNOWN_ERROR"
    assert plan.changes["error_message"] == "UNKNOWN_ERROR"


def test_plan_non_failure_clears_error_fields():
    plan = plan_transition(
        _row("processing", error_code="OLD", error_message="old"),
        "pending",
        at=NOW,
        reason=REASON_LEASE_EXPIRED,
        error_code="IGNORED",
    )
    assert plan.changes["error_code"] is None
    assert plan.changes["error_message"] is None
    assert plan.error_code is None
    assert plan.reason == REASON_LEASE_EXPIRED


def test_plan_refund_keeps_completed_at():
    plan = plan_transition(_row("completed", completed_at=NOW - timedelta(days=1)), "refunded", at=NOW)
    assert "completed_at" not in plan.changes
    assert plan.changes["status"] == "refunded"


def test_plan_rejects_unknown_detail_columns():
    with pytest.raises(ValueError):
        plan_transition(_row("processing"), "completed", at=NOW, details={"status": "failed"})


def test_plan_rejected_transition_has_no_side_effects():
    row = _row("completed")
    before = dict(row)
    with pytest.raises(InvalidTransitionError):
        plan_transition(row, "failed", at=NOW, error_code="INSUFFICIENT_FUNDS")
    assert row == before
