import pytest

import db
from services import metrics


class _Cursor:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, *args, **kwargs):
        pass


class _Conn:
    def __init__(self):
        self.committed = False
        self.rolled_back = False

    def cursor(self):
        return _Cursor()

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True


class _Pool:
    def __init__(self, conn):
        self.conn = conn

    def getconn(self):
        return self.conn

    def putconn(self, conn):
        pass


@pytest.fixture()
def pooled_conn(monkeypatch):
    conn = _Conn()
    monkeypatch.setattr(db, "_pool", _Pool(conn))
    return conn


def _transitions():
    return metrics.counter_value("payout_transitions_total", {"from": "pending", "to": "processing"})


def test_transition_counted_only_after_commit(pooled_conn):
    with db.get_conn() as conn:
        metrics.increment_transition(conn, "pending", "processing")
        metrics.increment_claims(conn, 1)
        assert _transitions() == 0

    assert pooled_conn.committed
    assert _transitions() == 1
    assert metrics.counter_value("payout_claims_total") == 1


def test_rolled_back_transaction_counts_nothing(pooled_conn):
    with pytest.raises(RuntimeError):
        with db.get_conn() as conn:
            metrics.increment_transition(conn, "pending", "processing")
            metrics.increment_lease_reclaimed(conn, "pending")
            raise RuntimeError("boom")

    assert pooled_conn.rolled_back
    assert _transitions() == 0
    assert metrics.counter_value("payout_leases_reclaimed_total", {"outcome": "pending"}) == 0

    # nothing left queued for the next transaction on the same connection
    with db.get_conn():
        pass
    assert _transitions() == 0
