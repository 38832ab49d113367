import json
from decimal import Decimal

import httpx
import pytest

from app.payouts.model import Completed, Failed
from app.providers import factory
from app.providers.base import GatewayError, classify_http_error
from app.providers.mock import MockGateway
from app.providers.wise import WiseGateway
from app.workers import payout_worker
from services import metrics
from settings import settings
from tests.conftest import make_record


@pytest.mark.parametrize(
    "status,message,code,retryable",
    [
        (400, "Insufficient balance on profile", "INSUFFICIENT_BALANCE", False),
        (400, "Account number is invalid", "INVALID_ACCOUNT", False),
        (400, "targetAmount must be positive", "INVALID_REQUEST", False),
        (401, "bad token", "UNAUTHORIZED", False),
        (403, "nope", "FORBIDDEN", False),
        (429, "slow down", "RATE_LIMIT_EXCEEDED", True),
        (502, "bad gateway", "SERVER_ERROR", True),
        (404, "missing", "WISE_API_ERROR", False),
    ],
)
def test_classify_http_error(status, message, code, retryable):
    err = classify_http_error(status, message)
    assert err.code == code
    assert err.retryable is retryable
    assert err.status_code == status


def test_backoff_delay_is_capped(monkeypatch):
    monkeypatch.setattr(settings, "GATEWAY_BACKOFF_INITIAL_S", 1.0, raising=False)
    monkeypatch.setattr(settings, "GATEWAY_BACKOFF_MULTIPLIER", 2.0, raising=False)
    monkeypatch.setattr(settings, "GATEWAY_BACKOFF_MAX_S", 10.0, raising=False)
    assert [payout_worker.backoff_delay(n) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_retry_recovers_after_transient_failures(monkeypatch):
    monkeypatch.setattr(settings, "GATEWAY_MAX_RETRIES", 3, raising=False)
    gateway = MockGateway(fail_times=2)
    slept = []
    payout = make_record(status="processing")

    outcome = payout_worker.call_with_retries(gateway, payout, sleep=slept.append)

    assert isinstance(outcome, Completed)
    assert outcome.provider_transfer_id == f"mock-{payout.id}"
    assert len(gateway.calls) == 3
    assert slept == [1.0, 2.0]
    assert metrics.counter_value("gateway_attempts_total", {"result": "retry"}) == 2
    assert metrics.counter_value("gateway_attempts_total", {"result": "ok"}) == 1


def test_retry_exhaustion_becomes_failure(monkeypatch):
    monkeypatch.setattr(settings, "GATEWAY_MAX_RETRIES", 3, raising=False)
    gateway = MockGateway(succeed=False, failure_http_status=504)
    slept = []

    outcome = payout_worker.call_with_retries(gateway, make_record(status="processing"), sleep=slept.append)

    assert isinstance(outcome, Failed)
    assert outcome.error_code == payout_worker.RETRIES_EXHAUSTED
    assert "SERVER_ERROR" in outcome.error_message
    assert len(gateway.calls) == 3
    assert len(slept) == 2


def test_non_retryable_failure_is_not_retried():
    gateway = MockGateway(succeed=False, failure_http_status=400, failure_message="Insufficient balance")
    slept = []

    outcome = payout_worker.call_with_retries(gateway, make_record(status="processing"), sleep=slept.append)

    assert isinstance(outcome, Failed)
    assert outcome.error_code == "INSUFFICIENT_BALANCE"
    assert len(gateway.calls) == 1
    assert slept == []


# ---------------------------
# Wise over httpx.MockTransport
# ---------------------------

def _wise(handler, *, mode="sandbox"):
    return WiseGateway(
        base_url="https://wise.test",
        token="test-token",
        profile_id="12345",
        mode=mode,
        timeout_s=5,
        transport=httpx.MockTransport(handler),
    )


def _happy_handler(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        seen.append((request.method, request.url.path, body, request.headers.get("Authorization")))
        path = request.url.path
        if path == "/v2/quotes":
            return httpx.Response(200, json={"id": "quote-1", "fee": 2.5, "rate": 1550.5, "sourceAmount": 32.25, "sourceCurrency": "USD"})
        if path == "/v1/accounts":
            return httpx.Response(200, json={"id": 777})
        if path == "/v1/transfers":
            return httpx.Response(200, json={"id": 9001, "status": "incoming_payment_waiting"})
        if path.endswith("/payments"):
            return httpx.Response(200, json={"status": "COMPLETED"})
        return httpx.Response(404, json={"message": "unexpected"})

    return handler


def test_wise_flow_creates_quote_recipient_and_transfer():
    seen = []
    payout = make_record(status="processing", customer_transaction_id="payout-abc")

    result = _wise(_happy_handler(seen)).send_transfer(payout)

    assert [p for _, p, _, _ in seen] == ["/v2/quotes", "/v1/accounts", "/v1/transfers"]
    assert all(auth == "Bearer test-token" for *_, auth in seen)
    quote_body = seen[0][2]
    assert quote_body["targetCurrency"] == "NGN"
    assert quote_body["profile"] == 12345
    recipient_body = seen[1][2]
    assert recipient_body["type"] == "nigerian_bank_account"
    assert recipient_body["details"]["accountNumber"] == "0123456789"
    transfer_body = seen[2][2]
    assert transfer_body["customerTransactionId"] == "payout-abc"
    assert transfer_body["targetAccount"] == 777

    assert result.provider_transfer_id == "9001"
    assert result.provider_quote_id == "quote-1"
    assert result.provider_recipient_id == "777"
    assert result.fee == Decimal("2.5")
    assert result.exchange_rate == Decimal("1550.5")


def test_wise_reuses_known_recipient_and_funds_in_live_mode():
    seen = []
    result = _wise(_happy_handler(seen), mode="live").send_transfer(make_record(status="processing"), recipient_id="555")

    paths = [p for _, p, _, _ in seen]
    assert "/v1/accounts" not in paths
    assert paths[-1] == "/v3/profiles/12345/transfers/9001/payments"
    assert result.provider_recipient_id == "555"


def test_wise_http_error_is_classified():
    def handler(request):
        return httpx.Response(400, json={"errors": [{"message": "Insufficient balance for this transfer"}]})

    with pytest.raises(GatewayError) as exc:
        _wise(handler).send_transfer(make_record(status="processing"))
    assert exc.value.code == "INSUFFICIENT_BALANCE"
    assert exc.value.retryable is False


def test_wise_timeout_is_retryable():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GatewayError) as exc:
        _wise(handler).send_transfer(make_record(status="processing"))
    assert exc.value.code == "TIMEOUT"
    assert exc.value.retryable is True


def test_wise_network_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayError) as exc:
        _wise(handler).send_transfer(make_record(status="processing"))
    assert exc.value.code == "NETWORK_ERROR"
    assert exc.value.retryable is True


def test_wise_unsupported_currency():
    seen = []
    with pytest.raises(GatewayError) as exc:
        _wise(_happy_handler(seen)).send_transfer(make_record(status="processing", currency="EUR"))
    assert exc.value.code == "UNSUPPORTED_CURRENCY"
    assert exc.value.retryable is False


def test_factory_picks_mock_without_token(monkeypatch):
    monkeypatch.setattr(settings, "WISE_API_TOKEN", "", raising=False)
    factory.reset_gateway_cache()
    try:
        gateway = factory.get_gateway()
        assert isinstance(gateway, MockGateway)
        assert factory.get_gateway() is gateway
        assert isinstance(factory.get_gateway("wise"), WiseGateway)
        with pytest.raises(ValueError):
            factory.get_gateway("carrier-pigeon")
    finally:
        factory.reset_gateway_cache()


def test_wise_transfer_status_lookup():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.url.path == "/v1/transfers/9001":
            return httpx.Response(200, json={"id": 9001, "status": "bounced_back"})
        if request.url.path == "/v1/transfers/9002":
            return httpx.Response(200, json={"id": 9002})
        return httpx.Response(404, json={"message": "Transfer not found"})

    gateway = _wise(handler)
    status = gateway.get_transfer_status("9001")

    assert seen[0] == ("GET", "/v1/transfers/9001")
    assert status.provider_transfer_id == "9001"
    assert status.state == "bounced_back"

    with pytest.raises(GatewayError) as exc:
        gateway.get_transfer_status("9002")
    assert exc.value.code == "INVALID_RESPONSE"

    with pytest.raises(GatewayError) as exc:
        gateway.get_transfer_status("404")
    assert exc.value.status_code == 404
    assert exc.value.retryable is False
