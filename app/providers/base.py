# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol

from app.payouts.model import Completed, PayoutRecord


@dataclass(frozen=True)
class TransferResult:
    """What the rail returned once it accepted a transfer."""

    provider_transfer_id: str
    fee: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    source_amount: Optional[Decimal] = None
    source_currency: Optional[str] = None
    provider_recipient_id: Optional[str] = None
    provider_quote_id: Optional[str] = None
    response: Optional[dict[str, Any]] = None

    def as_outcome(self) -> Completed:
        return Completed(
            provider_transfer_id=self.provider_transfer_id,
            fee=self.fee,
            exchange_rate=self.exchange_rate,
            source_amount=self.source_amount,
            source_currency=self.source_currency,
            provider_recipient_id=self.provider_recipient_id,
            provider_quote_id=self.provider_quote_id,
            provider_response=self.response,
        )


@dataclass(frozen=True)
class TransferStatus:
    """The rail's current state for a transfer it already accepted."""

    provider_transfer_id: str
    state: str
    response: Optional[dict[str, Any]] = None


class GatewayError(Exception):
    def __init__(
        self,
        message: str,
        *,
        code: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        response: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable
        self.response = response

    def __repr__(self) -> str:
        return f"GatewayError(code={self.code!r}, status_code={self.status_code!r}, retryable={self.retryable!r})"


class PayoutGateway(Protocol):
    name: str

    def send_transfer(self, payout: PayoutRecord, *, recipient_id: Optional[str] = None) -> TransferResult: ...

    def get_transfer_status(self, provider_transfer_id: str) -> TransferStatus: ...


def is_retryable_http(code: int) -> bool:
    # throttling and server-side failures
    return code == 429 or code >= 500


def classify_http_error(status_code: int, message: str, *, response: Optional[dict[str, Any]] = None) -> GatewayError:
    text = (message or "").lower()
    if status_code == 400:
        if "balance" in text:
            code = "INSUFFICIENT_BALANCE"
        elif "account" in text:
            code = "INVALID_ACCOUNT"
        else:
            code = "INVALID_REQUEST"
    elif status_code == 401:
        code = "UNAUTHORIZED"
    elif status_code == 403:
        code = "FORBIDDEN"
    elif status_code == 429:
        code = "RATE_LIMIT_EXCEEDED"
    elif status_code >= 500:
        code = "SERVER_ERROR"
    else:
        code = "WISE_API_ERROR"

    return GatewayError(
        message or f"HTTP {status_code}",
        code=code,
        status_code=status_code,
        retryable=is_retryable_http(status_code),
        response=response,
    )


def timeout_error(message: str = "Gateway request timed out") -> GatewayError:
    return GatewayError(message, code="TIMEOUT", retryable=True)


def network_error(message: str = "Gateway network error") -> GatewayError:
    return GatewayError(message, code="NETWORK_ERROR", retryable=True)
