from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"
REFUNDED = "refunded"

STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED, REFUNDED)


@dataclass(frozen=True)
class Recipient:
    account_number: str
    account_name: str
    bank_code: str
    bank_name: Optional[str] = None


@dataclass(frozen=True)
class PayoutRequest:
    creator_id: UUID
    amount: Decimal
    currency: str
    recipient: Recipient
    reference: str
    customer_transaction_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One immutable audit row. from_status is None only for the creation entry."""

    seq: int
    status: str
    from_status: Optional[str]
    timestamp: datetime
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime


Lifecycle = Union[Active, Deleted]


@dataclass(frozen=True)
class PayoutRecord:
    id: UUID
    creator_id: UUID
    reference: str
    amount: Decimal
    currency: str
    recipient: Recipient
    status: str
    created_at: datetime
    updated_at: datetime
    lifecycle: Lifecycle
    status_history: tuple[StatusHistoryEntry, ...] = ()
    provider_transfer_id: Optional[str] = None
    customer_transaction_id: Optional[str] = None
    provider_recipient_id: Optional[str] = None
    provider_quote_id: Optional[str] = None
    source_amount: Optional[Decimal] = None
    source_currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    provider_fee: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    attempt_count: int = 0
    lease_token: Optional[UUID] = None
    lease_expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.lifecycle, Deleted)


@dataclass(frozen=True)
class Lease:
    token: UUID
    expires_at: datetime


@dataclass(frozen=True)
class ClaimedPayout:
    payout: PayoutRecord
    lease: Lease


@dataclass(frozen=True)
class PayoutPage:
    items: list[PayoutRecord]
    page: int
    limit: int
    total: int


# Worker outcomes

@dataclass(frozen=True)
class Completed:
    provider_transfer_id: str
    fee: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    source_amount: Optional[Decimal] = None
    source_currency: Optional[str] = None
    provider_recipient_id: Optional[str] = None
    provider_quote_id: Optional[str] = None
    provider_response: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Failed:
    error_code: str
    error_message: str
    provider_response: Optional[dict[str, Any]] = None


Outcome = Union[Completed, Failed]


def record_from_row(row: dict[str, Any], history: list[StatusHistoryEntry] | None = None) -> PayoutRecord:
    deleted_at = row.get("deleted_at")
    return PayoutRecord(
        id=row["id"],
        creator_id=row["creator_id"],
        reference=row["reference"],
        amount=row["amount"],
        currency=row["currency"],
        recipient=Recipient(
            account_number=row["recipient_account_number"],
            account_name=row["recipient_account_name"],
            bank_code=row["recipient_bank_code"],
            bank_name=row.get("recipient_bank_name"),
        ),
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        lifecycle=Deleted(at=deleted_at) if deleted_at is not None else Active(),
        status_history=tuple(history or ()),
        provider_transfer_id=row.get("provider_transfer_id"),
        customer_transaction_id=row.get("customer_transaction_id"),
        provider_recipient_id=row.get("provider_recipient_id"),
        provider_quote_id=row.get("provider_quote_id"),
        source_amount=row.get("source_amount"),
        source_currency=row.get("source_currency"),
        exchange_rate=row.get("exchange_rate"),
        provider_fee=row.get("provider_fee"),
        error_code=row.get("error_code"),
        error_message=row.get("error_message"),
        completed_at=row.get("completed_at"),
        failed_at=row.get("failed_at"),
        attempt_count=int(row.get("attempt_count") or 0),
        lease_token=row.get("lease_token"),
        lease_expires_at=row.get("lease_expires_at"),
        metadata=dict(row.get("metadata") or {}),
    )


def history_from_row(row: dict[str, Any]) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        seq=int(row["seq"]),
        status=row["status"],
        from_status=row.get("from_status"),
        timestamp=row["occurred_at"],
        error_code=row.get("error_code"),
        error_message=row.get("error_message"),
        reason=row.get("reason"),
    )
