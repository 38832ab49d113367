# app/providers/mock.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from app.payouts.model import PayoutRecord
from app.providers.base import TransferResult, TransferStatus, classify_http_error


class MockGateway:
    """
    Test/dev gateway.

    - succeed=True: every call returns a transfer id derived from the payout id.
    - fail_times=N: the first N calls fail with ``failure_http_status`` before succeeding.
    - succeed=False: every call fails with ``failure_http_status`` (504 => retryable,
      400 => not retryable).
    - transfer_states: rail state per transfer id for status lookups; unknown ids
      report ``default_state``; a None state answers 404.
    """

    name = "mock"

    def __init__(
        self,
        *,
        succeed: bool = True,
        fail_times: int = 0,
        failure_http_status: int = 504,
        failure_message: str = "Gateway timeout",
        transfer_states: Optional[dict[str, Optional[str]]] = None,
        default_state: str = "outgoing_payment_sent",
    ):
        self.succeed = succeed
        self.fail_times = fail_times
        self.failure_http_status = failure_http_status
        self.failure_message = failure_message
        self.calls: list[tuple[str, Optional[str]]] = []
        self.transfer_states = dict(transfer_states or {})
        self.default_state = default_state
        self.status_calls: list[str] = []

    def send_transfer(self, payout: PayoutRecord, *, recipient_id: Optional[str] = None) -> TransferResult:
        self.calls.append((str(payout.id), recipient_id))
        if not self.succeed or len(self.calls) <= self.fail_times:
            raise classify_http_error(
                self.failure_http_status,
                self.failure_message,
                response={"http_status": self.failure_http_status, "mock": True},
            )

        return TransferResult(
            provider_transfer_id=f"mock-{payout.id}",
            fee=Decimal("0.00"),
            exchange_rate=Decimal("1.000000"),
            source_amount=payout.amount,
            source_currency=payout.currency,
            provider_recipient_id=recipient_id or f"mock-recipient-{payout.creator_id}",
            provider_quote_id=f"mock-quote-{payout.id}",
            response={"http_status": 200, "mock": True},
        )

    def get_transfer_status(self, provider_transfer_id: str) -> TransferStatus:
        self.status_calls.append(provider_transfer_id)
        state = self.transfer_states.get(provider_transfer_id, self.default_state)
        if state is None:
            raise classify_http_error(404, "Transfer not found", response={"http_status": 404, "mock": True})
        return TransferStatus(
            provider_transfer_id=provider_transfer_id,
            state=state,
            response={"id": provider_transfer_id, "status": state, "mock": True},
        )
