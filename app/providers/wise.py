# app/providers/wise.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from app.payouts.model import PayoutRecord
from app.providers.base import GatewayError, TransferResult, TransferStatus
from app.providers.http import HttpClient
from services.redaction import mask_account_number
from settings import settings, wise_api_url

logger = logging.getLogger("payouts.gateway")

# currency -> (Wise recipient type, extra details)
RECIPIENT_TYPES: dict[str, tuple[str, dict[str, str]]] = {
    "NGN": ("nigerian_bank_account", {"legalType": "PRIVATE", "accountType": "checking"}),
    "GHS": ("ghanaian_bank_account", {"accountType": "checking"}),
    "KES": ("kenyan_bank_account", {"accountType": "checking"}),
}


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


class WiseGateway:
    """
    Wise REST flow for one payout:
      quote -> recipient (reused when known) -> transfer -> fund (live only)

    The record's customer_transaction_id is Wise's idempotency key, so a
    retried or re-claimed payout never creates a second transfer.
    """

    name = "wise"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        profile_id: str | None = None,
        mode: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.mode = (mode or settings.WISE_MODE).strip().lower()
        self.profile_id = str(profile_id or settings.WISE_PROFILE_ID or "").strip()
        self.source_currency = settings.PAYOUT_DEFAULT_SOURCE_CURRENCY.upper()
        self.http = HttpClient(
            base_url or wise_api_url(),
            token=token if token is not None else settings.WISE_API_TOKEN,
            timeout_s=float(timeout_s or settings.GATEWAY_TIMEOUT_S),
            transport=transport,
        )

    def _profile(self) -> int:
        if not self.profile_id.isdigit():
            raise GatewayError("WISE_PROFILE_ID is not configured", code="CONFIGURATION_ERROR")
        return int(self.profile_id)

    def create_quote(self, payout: PayoutRecord) -> dict[str, Any]:
        return self.http.post(
            "/v2/quotes",
            {
                "profile": self._profile(),
                "sourceCurrency": self.source_currency,
                "targetCurrency": payout.currency,
                "targetAmount": float(payout.amount),
            },
        )

    def create_recipient(self, payout: PayoutRecord) -> dict[str, Any]:
        recipient_spec = RECIPIENT_TYPES.get(payout.currency)
        if recipient_spec is None:
            raise GatewayError(f"Unsupported recipient currency: {payout.currency}", code="UNSUPPORTED_CURRENCY")
        recipient_type, extra = recipient_spec
        details = {
            "accountNumber": payout.recipient.account_number,
            "bankCode": payout.recipient.bank_code,
            **extra,
        }
        logger.info(
            "wise_create_recipient payout=%s currency=%s account=%s",
            payout.id,
            payout.currency,
            mask_account_number(payout.recipient.account_number),
        )
        return self.http.post(
            "/v1/accounts",
            {
                "currency": payout.currency,
                "type": recipient_type,
                "profile": self._profile(),
                "accountHolderName": payout.recipient.account_name,
                "ownedByCustomer": False,
                "details": details,
            },
        )

    def create_transfer(self, payout: PayoutRecord, *, recipient_id: str, quote_id: str) -> dict[str, Any]:
        return self.http.post(
            "/v1/transfers",
            {
                "targetAccount": int(recipient_id) if str(recipient_id).isdigit() else recipient_id,
                "quoteUuid": quote_id,
                "customerTransactionId": payout.customer_transaction_id,
                "details": {"reference": payout.reference[:35]},
            },
        )

    def fund_transfer(self, transfer_id: str) -> dict[str, Any]:
        return self.http.post(
            f"/v3/profiles/{self._profile()}/transfers/{transfer_id}/payments",
            {"type": "BALANCE"},
        )

    def send_transfer(self, payout: PayoutRecord, *, recipient_id: Optional[str] = None) -> TransferResult:
        quote = self.create_quote(payout) or {}
        quote_id = str(quote.get("id") or "")
        if not quote_id:
            raise GatewayError("Wise quote response has no id", code="INVALID_RESPONSE", response=quote)

        if not recipient_id:
            recipient = self.create_recipient(payout) or {}
            recipient_id = str(recipient.get("id") or "")
            if not recipient_id:
                raise GatewayError("Wise recipient response has no id", code="INVALID_RESPONSE", response=recipient)

        transfer = self.create_transfer(payout, recipient_id=recipient_id, quote_id=quote_id) or {}
        transfer_id = transfer.get("id")
        if transfer_id is None:
            raise GatewayError("Wise transfer response has no id", code="INVALID_RESPONSE", response=transfer)

        if self.mode == "live":
            self.fund_transfer(str(transfer_id))

        logger.info(
            "wise_transfer_created payout=%s transfer=%s status=%s",
            payout.id,
            transfer_id,
            transfer.get("status"),
        )
        return TransferResult(
            provider_transfer_id=str(transfer_id),
            fee=_decimal(quote.get("fee")),
            exchange_rate=_decimal(transfer.get("rate") or quote.get("rate")),
            source_amount=_decimal(quote.get("sourceAmount")),
            source_currency=quote.get("sourceCurrency") or self.source_currency,
            provider_recipient_id=recipient_id,
            provider_quote_id=quote_id,
            response=transfer,
        )

    def get_transfer_status(self, provider_transfer_id: str) -> TransferStatus:
        transfer = self.http.get(f"/v1/transfers/{provider_transfer_id}") or {}
        state = str(transfer.get("status") or "").strip()
        if not state:
            raise GatewayError("Wise transfer response has no status", code="INVALID_RESPONSE", response=transfer)
        logger.info("wise_transfer_status transfer=%s status=%s", provider_transfer_id, state)
        return TransferStatus(
            provider_transfer_id=str(transfer.get("id") or provider_transfer_id),
            state=state,
            response=transfer,
        )
