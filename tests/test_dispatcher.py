from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.payouts import dispatcher, repository
from app.payouts.errors import LeaseLostError
from app.payouts.model import Completed, Failed
from app.providers.mock import MockGateway
from services import transfer_sync, webhook_reconcile
from services.webhook_reconcile import Delivery
from tests.conftest import make_request


def _create(ledger, n=1, **overrides):
    with ledger() as conn:
        return [repository.create(conn, make_request(**overrides)) for _ in range(n)]


def _later(seconds=3600):
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def test_claim_moves_oldest_pending_to_processing(ledger):
    records = _create(ledger, 3)
    with ledger() as conn:
        claimed = dispatcher.claim(conn, 2)

    assert [c.payout.id for c in claimed] == [r.id for r in records[:2]]
    for c in claimed:
        assert c.payout.status == "processing"
        assert c.payout.attempt_count == 1
        assert c.payout.lease_token == c.lease.token
        assert c.payout.status_history[-1].reason == "claimed"


def test_concurrent_claims_partition_the_pending_set(ledger):
    _create(ledger, 4)
    with ledger() as first:
        claimed_a = dispatcher.claim(first, 2)
        # first transaction still holds its row locks
        with ledger() as second:
            claimed_b = dispatcher.claim(second, 10)

    ids_a = {c.payout.id for c in claimed_a}
    ids_b = {c.payout.id for c in claimed_b}
    assert len(ids_a) == 2
    assert len(ids_b) == 2
    assert not ids_a & ids_b


def test_successful_outcome_completes_the_payout(ledger):
    _create(ledger)
    with ledger() as conn:
        (claimed,) = dispatcher.claim(conn, 1)
    with ledger() as conn:
        record = dispatcher.report_outcome(
            conn,
            claimed.payout.id,
            Completed(provider_transfer_id="T-100", fee=Decimal("2.50"), provider_recipient_id="rcp-1"),
            lease_token=claimed.lease.token,
        )

    assert record.status == "completed"
    assert record.provider_transfer_id == "T-100"
    assert record.provider_fee == Decimal("2.50")
    assert record.completed_at is not None
    assert record.lease_token is None
    assert [h.status for h in record.status_history] == ["pending", "processing", "completed"]

    with ledger() as conn:
        assert repository.find_recipient_id(
            conn,
            creator_id=record.creator_id,
            account_number=record.recipient.account_number,
            currency=record.currency,
        ) == "rcp-1"


def test_failed_outcome_then_late_report_is_rejected(ledger):
    _create(ledger)
    with ledger() as conn:
        (claimed,) = dispatcher.claim(conn, 1)
    with ledger() as conn:
        record = dispatcher.report_outcome(
            conn,
            claimed.payout.id,
            Failed(error_code="INSUFFICIENT_BALANCE", error_message="balance too low"),
            lease_token=claimed.lease.token,
        )
    assert record.status == "failed"
    assert record.error_code == "INSUFFICIENT_BALANCE"
    assert record.failed_at is not None

    with ledger() as conn:
        with pytest.raises(LeaseLostError):
            dispatcher.report_outcome(
                conn,
                claimed.payout.id,
                Completed(provider_transfer_id="T-late"),
                lease_token=claimed.lease.token,
            )


def test_expired_lease_is_requeued_and_stale_report_discarded(ledger):
    _create(ledger)
    with ledger() as conn:
        (first,) = dispatcher.claim(conn, 1, lease_seconds=1)

    with ledger() as conn:
        reclaimed = dispatcher.reclaim_expired(conn, now=_later())
    assert [r.status for r in reclaimed] == ["pending"]
    assert reclaimed[0].lease_token is None
    assert reclaimed[0].status_history[-1].reason == "lease_expired"

    with ledger() as conn:
        (second,) = dispatcher.claim(conn, 1)
    assert second.payout.id == first.payout.id
    assert second.payout.attempt_count == 2

    with ledger() as conn:
        with pytest.raises(LeaseLostError):
            dispatcher.report_outcome(conn, first.payout.id, Completed(provider_transfer_id="T-1"), lease_token=first.lease.token)

    with ledger() as conn:
        record = dispatcher.report_outcome(
            conn, second.payout.id, Completed(provider_transfer_id="T-2"), lease_token=second.lease.token
        )
    assert record.status == "completed"
    assert record.provider_transfer_id == "T-2"


def test_unexpired_lease_is_left_alone(ledger):
    _create(ledger)
    with ledger() as conn:
        dispatcher.claim(conn, 1, lease_seconds=600)
    with ledger() as conn:
        assert dispatcher.reclaim_expired(conn) == []


def test_lease_expiry_after_max_attempts_fails_the_payout(ledger):
    _create(ledger)
    with ledger() as conn:
        dispatcher.claim(conn, 1, lease_seconds=1)
    with ledger() as conn:
        (record,) = dispatcher.reclaim_expired(conn, max_attempts=1, now=_later())

    assert record.status == "failed"
    assert record.error_code == dispatcher.LEASE_EXPIRED_MAX_ATTEMPTS
    assert record.failed_at is not None


def test_webhook_deliveries_against_the_ledger(ledger):
    _create(ledger)
    with ledger() as conn:
        (claimed,) = dispatcher.claim(conn, 1)
    with ledger() as conn:
        dispatcher.report_outcome(conn, claimed.payout.id, Completed(provider_transfer_id="9001"), lease_token=claimed.lease.token)

    with ledger() as conn:
        noop = webhook_reconcile.apply_delivery(conn, Delivery(provider_transfer_id="9001", status="completed", status_raw="outgoing_payment_sent"))
        rejected = webhook_reconcile.apply_delivery(
            conn,
            Delivery(provider_transfer_id="9001", status="failed", status_raw="failed", error_code="INSUFFICIENT_FUNDS"),
        )
        refunded = webhook_reconcile.apply_delivery(conn, Delivery(provider_transfer_id="9001", status="refunded", status_raw="funds_refunded"))
        missing = webhook_reconcile.apply_delivery(conn, Delivery(provider_transfer_id="nope", status="completed", status_raw="completed"))

    assert noop.outcome == webhook_reconcile.OUTCOME_NOOP
    assert rejected.outcome == webhook_reconcile.OUTCOME_REJECTED
    assert refunded.outcome == webhook_reconcile.OUTCOME_APPLIED
    assert missing.outcome == webhook_reconcile.OUTCOME_NOT_FOUND

    with ledger() as conn:
        record = repository.get(conn, claimed.payout.id)
        assert repository.get_by_provider_transfer_id(conn, "9001").id == record.id
        assert repository.get_by_provider_transfer_id(conn, "nope") is None
    assert record.status == "refunded"
    assert record.error_code is None
    assert [h.status for h in record.status_history] == ["pending", "processing", "completed", "refunded"]


def test_transfer_sync_settles_a_completed_payout_without_a_webhook(ledger):
    _create(ledger)
    with ledger() as conn:
        (claimed,) = dispatcher.claim(conn, 1)
    with ledger() as conn:
        dispatcher.report_outcome(
            conn,
            claimed.payout.id,
            Completed(provider_transfer_id="T-SYNC-1"),
            lease_token=claimed.lease.token,
        )

    gateway = MockGateway(transfer_states={"T-SYNC-1": "funds_refunded"})
    counts = transfer_sync.sync_once(gateway=gateway)

    assert counts == {"applied": 1}
    with ledger() as conn:
        record = repository.get(conn, claimed.payout.id)
    assert record.status == "refunded"
    assert record.status_history[-1].reason == "webhook"

    # a second pass finds the record settled and out of the candidate set
    assert transfer_sync.sync_once(gateway=gateway) == {}
