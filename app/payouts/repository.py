# app/payouts/repository.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor

from app.payouts.audit import load_history, record_creation
from app.payouts.errors import (
    DuplicateKeyError,
    DuplicateReferenceError,
    NotFoundError,
    PayoutInFlightError,
)
from app.payouts.model import (
    PENDING,
    PROCESSING,
    STATUSES,
    PayoutPage,
    PayoutRecord,
    PayoutRequest,
    record_from_row,
)
from app.payouts.schema import (
    ACTIVE_REFERENCE_INDEX,
    CUSTOMER_TRANSACTION_ID_KEY,
    PROVIDER_TRANSFER_ID_KEY,
)
from app.payouts.validation import validate_payout_request

MAX_PAGE_LIMIT = 200

_INSERT_COLUMNS = """
  id, creator_id, reference, amount, currency, status,
  recipient_account_number, recipient_account_name, recipient_bank_code, recipient_bank_name,
  customer_transaction_id, metadata, created_at, updated_at
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _insert_params(request: PayoutRequest, *, payout_id: UUID, at: datetime) -> tuple:
    return (
        payout_id,
        request.creator_id,
        request.reference,
        request.amount,
        request.currency,
        PENDING,
        request.recipient.account_number,
        request.recipient.account_name,
        request.recipient.bank_code,
        request.recipient.bank_name,
        request.customer_transaction_id or f"payout-{payout_id}",
        Json(request.metadata or {}),
        at,
        at,
    )


def translate_unique_violation(exc: Exception, *, reference: Optional[str] = None) -> Exception:
    """Map a psycopg2 UniqueViolation to the domain conflict it represents."""
    diag = getattr(exc, "diag", None)
    name = getattr(diag, "constraint_name", None) or ""
    if name == ACTIVE_REFERENCE_INDEX:
        return DuplicateReferenceError(reference or "")
    if name == PROVIDER_TRANSFER_ID_KEY:
        return DuplicateKeyError("provider_transfer_id")
    if name == CUSTOMER_TRANSACTION_ID_KEY:
        return DuplicateKeyError("customer_transaction_id")
    return exc


# ==========================================================
# Create
# ==========================================================

def create(conn, request: PayoutRequest) -> PayoutRecord:
    """
    Persist a new pending payout plus its creation history entry.
    Raises ValidationError before any SQL runs when the request breaks a
    business rule, and DuplicateReferenceError if an active record already
    uses the reference.
    """
    request = validate_payout_request(request)
    payout_id = uuid.uuid4()
    at = _utcnow()
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        try:
            cur.execute(
                f"""
                INSERT INTO app.creator_payouts ({_INSERT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
                RETURNING *
                """,
                _insert_params(request, payout_id=payout_id, at=at),
            )
        except pg_errors.UniqueViolation as exc:
            raise translate_unique_violation(exc, reference=request.reference) from exc
        row = cur.fetchone()
        record_creation(cur, payout_id=row["id"], at=row["created_at"])
    return get(conn, row["id"])


def insert_or_get(conn, request: PayoutRequest) -> tuple[PayoutRecord, bool]:
    """
    Single-statement check-and-create keyed on the active reference.
    Returns (record, created). A concurrent insert of the same reference
    blocks on the unique index until the other transaction resolves.
    """
    request = validate_payout_request(request)
    payout_id = uuid.uuid4()
    at = _utcnow()
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        try:
            cur.execute(
                f"""
                INSERT INTO app.creator_payouts ({_INSERT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
                ON CONFLICT (reference) WHERE deleted_at IS NULL DO NOTHING
                RETURNING *
                """,
                _insert_params(request, payout_id=payout_id, at=at),
            )
        except pg_errors.UniqueViolation as exc:
            raise translate_unique_violation(exc, reference=request.reference) from exc
        row = cur.fetchone()
        if row is not None:
            record_creation(cur, payout_id=row["id"], at=row["created_at"])
            return get(conn, row["id"]), True

    existing = get_by_reference(conn, request.reference)
    if existing is None:
        # the conflicting row was soft-deleted between the insert and this read
        raise DuplicateReferenceError(request.reference)
    return existing, False


# ==========================================================
# Reads (active records only)
# ==========================================================

def hydrate(conn, rows: list[dict[str, Any]]) -> list[PayoutRecord]:
    history = load_history(conn, [r["id"] for r in rows])
    return [record_from_row(r, history.get(r["id"], [])) for r in rows]


def _get_one(conn, where_sql: str, params: tuple) -> Optional[PayoutRecord]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT *
            FROM app.creator_payouts
            WHERE {where_sql}
              AND deleted_at IS NULL
            LIMIT 1
            """,
            params,
        )
        row = cur.fetchone()
    if not row:
        return None
    return hydrate(conn, [dict(row)])[0]


def find(conn, payout_id: UUID) -> Optional[PayoutRecord]:
    return _get_one(conn, "id = %s::uuid", (str(payout_id),))


def get(conn, payout_id: UUID) -> PayoutRecord:
    record = find(conn, payout_id)
    if record is None:
        raise NotFoundError(f"Payout {payout_id} not found")
    return record


def get_by_reference(conn, reference: str) -> Optional[PayoutRecord]:
    return _get_one(conn, "reference = %s", (reference,))


def get_by_provider_transfer_id(conn, provider_transfer_id: str) -> Optional[PayoutRecord]:
    return _get_one(conn, "provider_transfer_id = %s", (provider_transfer_id,))


def list_payouts(
    conn,
    *,
    creator_id: Optional[UUID] = None,
    status: Optional[str] = None,
    currency: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
    ascending: bool = False,
) -> PayoutPage:
    if status is not None and status not in STATUSES:
        raise ValueError(f"unknown status filter: {status}")
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_LIMIT))

    clauses = ["deleted_at IS NULL"]
    params: list[Any] = []
    if creator_id is not None:
        clauses.append("creator_id = %s::uuid")
        params.append(str(creator_id))
    if status is not None:
        clauses.append("status = %s")
        params.append(status)
    if currency is not None:
        clauses.append("currency = %s")
        params.append(currency.upper())
    if created_from is not None:
        clauses.append("created_at >= %s")
        params.append(created_from)
    if created_to is not None:
        clauses.append("created_at <= %s")
        params.append(created_to)
    where_sql = " AND ".join(clauses)
    direction = "ASC" if ascending else "DESC"

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT COUNT(*) AS n FROM app.creator_payouts WHERE {where_sql}", tuple(params))
        total = int(cur.fetchone()["n"])
        cur.execute(
            f"""
            SELECT *
            FROM app.creator_payouts
            WHERE {where_sql}
            ORDER BY created_at {direction}, id {direction}
            LIMIT %s OFFSET %s
            """,
            (*params, limit, (page - 1) * limit),
        )
        rows = [dict(r) for r in cur.fetchall()]

    return PayoutPage(items=hydrate(conn, rows), page=page, limit=limit, total=total)


def find_recipient_id(conn, *, creator_id: UUID, account_number: str, currency: str) -> Optional[str]:
    """Most recent rail recipient id recorded for this creator/account/currency."""
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT provider_recipient_id
            FROM app.creator_payouts
            WHERE creator_id = %s::uuid
              AND recipient_account_number = %s
              AND currency = %s
              AND provider_recipient_id IS NOT NULL
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (str(creator_id), account_number, currency),
        )
        row = cur.fetchone()
    return row[0] if row else None


# ==========================================================
# Soft delete (admin path, outside the state machine)
# ==========================================================

def soft_delete(conn, payout_id: UUID) -> PayoutRecord:
    """
    Hide an active record. Raises PayoutInFlightError while it is processing.
    """
    current = lock_active(conn, payout_id)
    if current is None:
        raise NotFoundError(f"Payout {payout_id} not found")
    if current["status"] == PROCESSING:
        raise PayoutInFlightError(f"Payout {payout_id} is processing and cannot be deleted")

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE app.creator_payouts
            SET deleted_at = %s
            WHERE id = %s::uuid
            RETURNING *
            """,
            (_utcnow(), str(payout_id)),
        )
        row = cur.fetchone()
    row = dict(row)
    history = load_history(conn, [row["id"]])
    return record_from_row(row, history.get(row["id"], []))


# ==========================================================
# Locking helpers (used by the transition engine / dispatcher)
# ==========================================================

def lock_active(conn, payout_id: UUID) -> Optional[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT *
            FROM app.creator_payouts
            WHERE id = %s::uuid
              AND deleted_at IS NULL
            FOR UPDATE
            """,
            (str(payout_id),),
        )
        row = cur.fetchone()
    return dict(row) if row else None


def lock_by_provider_transfer_id(conn, provider_transfer_id: str) -> Optional[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT *
            FROM app.creator_payouts
            WHERE provider_transfer_id = %s
              AND deleted_at IS NULL
            FOR UPDATE
            """,
            (provider_transfer_id,),
        )
        row = cur.fetchone()
    return dict(row) if row else None


def transfers_to_sync(
    conn,
    *,
    since: datetime,
    after_id: Optional[UUID] = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """
    Active records the rail has accepted and may still move, touched since
    ``since``. Keyset-paged on id.
    """
    cursor_id = str(after_id) if after_id else None
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, provider_transfer_id, status
            FROM app.creator_payouts
            WHERE deleted_at IS NULL
              AND provider_transfer_id IS NOT NULL
              AND status IN ('processing', 'completed')
              AND updated_at >= %s
              AND (%s::uuid IS NULL OR id > %s::uuid)
            ORDER BY id
            LIMIT %s
            """,
            (since, cursor_id, cursor_id, int(limit)),
        )
        return [dict(r) for r in cur.fetchall()]


def lock_pending_batch(conn, *, batch_size: int) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT *
            FROM app.creator_payouts
            WHERE status = 'pending'
              AND deleted_at IS NULL
            ORDER BY created_at ASC, id ASC
            LIMIT %s
            FOR UPDATE SKIP LOCKED
            """,
            (batch_size,),
        )
        return [dict(r) for r in cur.fetchall()]


def lock_expired_leases(conn, *, batch_size: int, now: datetime) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT *
            FROM app.creator_payouts
            WHERE status = 'processing'
              AND deleted_at IS NULL
              AND (lease_expires_at IS NULL OR lease_expires_at <= %s)
            ORDER BY lease_expires_at NULLS FIRST, updated_at ASC
            LIMIT %s
            FOR UPDATE SKIP LOCKED
            """,
            (now, batch_size),
        )
        return [dict(r) for r in cur.fetchall()]


def write_transition(conn, *, payout_id: UUID, from_status: str, changes: dict[str, Any]) -> Optional[dict[str, Any]]:
    """
    Apply precomputed column changes guarded on the prior status.
    Returns the updated row, or None if the status moved underneath us.
    """
    assignments = []
    params: list[Any] = []
    for column, value in changes.items():
        if column in ("provider_response",):
            assignments.append(f"{column} = %s::jsonb")
            params.append(Json(value) if value is not None else None)
        else:
            assignments.append(f"{column} = %s")
            params.append(value)

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        try:
            cur.execute(
                f"""
                UPDATE app.creator_payouts
                SET {", ".join(assignments)}
                WHERE id = %s::uuid
                  AND status = %s
                  AND deleted_at IS NULL
                RETURNING *
                """,
                (*params, str(payout_id), from_status),
            )
        except pg_errors.UniqueViolation as exc:
            raise translate_unique_violation(exc) from exc
        row = cur.fetchone()
    return dict(row) if row else None
