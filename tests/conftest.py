# tests/conftest.py

import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

import db
from app.payouts.model import (
    PENDING,
    Active,
    PayoutRecord,
    PayoutRequest,
    Recipient,
)
from app.payouts.schema import ensure_schema
from main import create_app
from services import metrics
from settings import settings


TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "").strip()
ADMIN_KEY = "pytest-admin-key"
WEBHOOK_SECRET = "pytest-webhook-secret-0123456789abcdef"


# ---------------------------
# Client
# ---------------------------

@pytest.fixture(scope="session")
def client() -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(create_app(), raise_server_exceptions=False)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture()
def admin_headers(monkeypatch) -> dict[str, str]:
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY, raising=False)
    return {"X-Admin-Key": ADMIN_KEY}


# ---------------------------
# Fakes for DB-free tests
# ---------------------------

class FakeConn:
    """Stands in for a psycopg2 connection when the code under test is patched out."""

    def __init__(self):
        self.committed = False

    def cursor(self, *args, **kwargs):  # pragma: no cover
        raise AssertionError("unexpected SQL in a DB-free test")


@pytest.fixture()
def fake_conn(monkeypatch):
    """
    Replace get_conn everywhere routes and the worker import it.
    Yields the FakeConn handed out by every `with get_conn() as conn`.
    """
    conn = FakeConn()

    @contextmanager
    def _get_conn():
        yield conn
        conn.committed = True

    import routes.admin_payouts
    import routes.health
    import routes.payouts
    import routes.webhooks
    from app.workers import payout_worker

    for module in (routes.payouts, routes.admin_payouts, routes.webhooks, routes.health, payout_worker):
        monkeypatch.setattr(module, "get_conn", _get_conn, raising=True)
    return conn


def make_request(**overrides: Any) -> PayoutRequest:
    fields: dict[str, Any] = {
        "creator_id": uuid.uuid4(),
        "amount": Decimal("50000.00"),
        "currency": "NGN",
        "recipient": Recipient(
            account_number="0123456789",
            account_name="Ada Creator",
            bank_code="058",
            bank_name="GTBank",
        ),
        "reference": f"REF-{uuid.uuid4()}",
        "customer_transaction_id": None,
        "metadata": {},
    }
    fields.update(overrides)
    return PayoutRequest(**fields)


def make_record(*, status: str = PENDING, payout_id: Optional[uuid.UUID] = None, **overrides: Any) -> PayoutRecord:
    now = datetime.now(timezone.utc)
    fields: dict[str, Any] = {
        "id": payout_id or uuid.uuid4(),
        "creator_id": uuid.uuid4(),
        "reference": f"REF-{uuid.uuid4()}",
        "amount": Decimal("50000.00"),
        "currency": "NGN",
        "recipient": Recipient(account_number="0123456789", account_name="Ada Creator", bank_code="058"),
        "status": status,
        "created_at": now,
        "updated_at": now,
        "lifecycle": Active(),
        "customer_transaction_id": "payout-test",
    }
    fields.update(overrides)
    return PayoutRecord(**fields)


def payload_for(request: PayoutRequest) -> dict[str, Any]:
    return {
        "creator_id": str(request.creator_id),
        "amount": str(request.amount),
        "currency": request.currency,
        "reference": request.reference,
        "recipient": {
            "account_number": request.recipient.account_number,
            "account_name": request.recipient.account_name,
            "bank_code": request.recipient.bank_code,
            "bank_name": request.recipient.bank_name,
        },
    }


# ---------------------------
# PostgreSQL (ledger integration tests)
# ---------------------------

@pytest.fixture(scope="session")
def pg_database():
    if not TEST_DATABASE_URL:
        pytest.skip("TEST_DATABASE_URL not set; ledger integration tests need PostgreSQL")

    original = settings.DATABASE_URL
    db.close_pool()
    settings.DATABASE_URL = TEST_DATABASE_URL
    with db.get_conn() as conn:
        ensure_schema(conn)
    yield TEST_DATABASE_URL
    db.close_pool()
    settings.DATABASE_URL = original


@pytest.fixture()
def ledger(pg_database):
    """Empty ledger for each test. TRUNCATE does not fire the append-only row trigger."""
    with db.get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                TRUNCATE app.payout_status_history, app.creator_payouts,
                         app.webhook_events, app.audit_log
                RESTART IDENTITY CASCADE;
                """
            )
    yield db.get_conn
