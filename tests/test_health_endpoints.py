import routes.health as health
from settings import settings


def test_health_reports_env_and_gateway(client, monkeypatch):
    monkeypatch.setattr(settings, "WISE_API_TOKEN", "", raising=False)
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["wise_mode"] in ("sandbox", "live")
    assert body["gateway"] == "mock"
    assert "env" in body


def test_healthz_reports_db_state(client, monkeypatch):
    monkeypatch.setattr(health, "_check_db", lambda: (False, "OperationalError: down"))
    r = client.get("/healthz")
    assert r.status_code == 200
    body = r.json()
    assert body["db_ok"] is False
    assert body["db_error"] == "OperationalError: down"


def test_readyz_requires_current_migration(client, monkeypatch):
    monkeypatch.setattr(health, "_check_db", lambda: (True, None))
    monkeypatch.setattr(health, "_current_revision", lambda: health.MIGRATION_REVISION)
    body = client.get("/readyz").json()
    assert body["ready"] is True
    assert body["current_revision"] == "0001_creator_payouts"

    monkeypatch.setattr(health, "_current_revision", lambda: "0000_older")
    body = client.get("/readyz").json()
    assert body["ready"] is False
    assert body["migrations_ok"] is False


def test_readyz_not_ready_without_db(client, monkeypatch):
    monkeypatch.setattr(health, "_check_db", lambda: (False, "OperationalError: down"))
    assert client.get("/readyz").json()["ready"] is False


def test_metrics_endpoint_renders_counters(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert "# TYPE http_requests_total counter" in r.text
