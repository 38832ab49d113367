# schemas.py
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.payouts.model import PayoutRecord, PayoutRequest, Recipient
from settings import allowed_currencies

PayoutStatus = Literal["pending", "processing", "completed", "failed", "cancelled", "refunded"]


# -------- REQUESTS --------
class RecipientIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_number: str = Field(min_length=1, max_length=50)
    account_name: str = Field(min_length=1, max_length=255)
    bank_code: str = Field(min_length=1, max_length=10)
    bank_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("bank_name")
    @classmethod
    def _blank_bank_name(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class PayoutCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    creator_id: UUID
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2, allow_inf_nan=False)
    currency: str = Field(min_length=3, max_length=3)
    reference: str = Field(min_length=1, max_length=255)
    recipient: RecipientIn
    customer_transaction_id: Optional[str] = Field(default=None, max_length=255)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _nest_flat_recipient(cls, data: Any) -> Any:
        # older clients send recipient_account_number etc. at the top level
        if isinstance(data, dict) and data.get("recipient") is None:
            flat = {k[len("recipient_"):]: v for k, v in data.items() if k.startswith("recipient_")}
            if flat:
                data = {k: v for k, v in data.items() if not k.startswith("recipient_")}
                data["recipient"] = flat
        return data

    @field_validator("currency")
    @classmethod
    def _allowed_currency(cls, v: str) -> str:
        v = v.upper()
        allowed = allowed_currencies()
        if v not in allowed:
            raise ValueError(f"unsupported, expected one of {', '.join(sorted(allowed))}")
        return v

    @field_validator("customer_transaction_id")
    @classmethod
    def _blank_customer_tx(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_is_json(cls, v: Any) -> Any:
        if v is None:
            return {}
        try:
            json.dumps(v)
        except (TypeError, ValueError):
            raise ValueError("must be JSON serializable")
        return v

    def to_request(self) -> PayoutRequest:
        return PayoutRequest(
            creator_id=self.creator_id,
            amount=self.amount,
            currency=self.currency,
            recipient=Recipient(
                account_number=self.recipient.account_number,
                account_name=self.recipient.account_name,
                bank_code=self.recipient.bank_code,
                bank_name=self.recipient.bank_name,
            ),
            reference=self.reference,
            customer_transaction_id=self.customer_transaction_id,
            metadata=dict(self.metadata),
        )


# -------- RESPONSES --------
class RecipientOut(BaseModel):
    account_number: str
    account_name: str
    bank_code: str
    bank_name: Optional[str] = None


class StatusHistoryOut(BaseModel):
    seq: int
    from_status: Optional[PayoutStatus] = None
    status: PayoutStatus
    timestamp: datetime
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    reason: Optional[str] = None


class PayoutOut(BaseModel):
    id: UUID
    creator_id: UUID
    reference: str
    amount: Decimal
    currency: str
    status: PayoutStatus
    recipient: RecipientOut
    provider_transfer_id: Optional[str] = None
    customer_transaction_id: Optional[str] = None
    provider_fee: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    source_amount: Optional[Decimal] = None
    source_currency: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempt_count: int = 0
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    status_history: List[StatusHistoryOut] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: PayoutRecord) -> "PayoutOut":
        return cls(
            id=record.id,
            creator_id=record.creator_id,
            reference=record.reference,
            amount=record.amount,
            currency=record.currency,
            status=record.status,
            recipient=RecipientOut(
                account_number=record.recipient.account_number,
                account_name=record.recipient.account_name,
                bank_code=record.recipient.bank_code,
                bank_name=record.recipient.bank_name,
            ),
            provider_transfer_id=record.provider_transfer_id,
            customer_transaction_id=record.customer_transaction_id,
            provider_fee=record.provider_fee,
            exchange_rate=record.exchange_rate,
            source_amount=record.source_amount,
            source_currency=record.source_currency,
            error_code=record.error_code,
            error_message=record.error_message,
            attempt_count=record.attempt_count,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
            failed_at=record.failed_at,
            deleted_at=getattr(record.lifecycle, "at", None),
            metadata=record.metadata,
            status_history=[
                StatusHistoryOut(
                    seq=h.seq,
                    from_status=h.from_status,
                    status=h.status,
                    timestamp=h.timestamp,
                    error_code=h.error_code,
                    error_message=h.error_message,
                    reason=h.reason,
                )
                for h in record.status_history
            ],
        )


class PayoutListOut(BaseModel):
    items: List[PayoutOut]
    page: int
    limit: int
    total: int


class PendingSummaryItem(BaseModel):
    currency: str
    pending_count: int
    total_amount: Decimal
    oldest_created_at: Optional[datetime] = None
    newest_created_at: Optional[datetime] = None


class CreatorCurrencyStats(BaseModel):
    currency: str
    counts: Dict[str, int]
    total_payouts: int
    total_paid_out: Decimal
    last_payout_at: Optional[datetime] = None


class CreatorStatsOut(BaseModel):
    creator_id: UUID
    by_currency: List[CreatorCurrencyStats]


class ReclaimOut(BaseModel):
    reclaimed: int
    payouts: List[PayoutOut]


class WebhookAck(BaseModel):
    ok: bool = True
    outcome: str
    payout_id: Optional[UUID] = None
    status_before: Optional[str] = None
    status_after: Optional[str] = None
