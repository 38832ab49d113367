# app/payouts/schema.py
from __future__ import annotations

PAYOUTS_TABLE = "app.creator_payouts"
HISTORY_TABLE = "app.payout_status_history"

ACTIVE_REFERENCE_INDEX = "ux_creator_payouts_active_reference"
PROVIDER_TRANSFER_ID_KEY = "creator_payouts_provider_transfer_id_key"
CUSTOMER_TRANSACTION_ID_KEY = "creator_payouts_customer_transaction_id_key"

SCHEMA_STATEMENTS: tuple[str, ...] = (
    "CREATE SCHEMA IF NOT EXISTS app;",
    "CREATE EXTENSION IF NOT EXISTS pgcrypto;",
    """
    CREATE TABLE IF NOT EXISTS app.creator_payouts (
      id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
      creator_id uuid NOT NULL,
      reference varchar(255) NOT NULL,

      amount numeric(14, 2) NOT NULL
        CONSTRAINT creator_payouts_amount_positive CHECK (amount > 0),
      currency varchar(3) NOT NULL,

      status varchar(20) NOT NULL DEFAULT 'pending'
        CONSTRAINT creator_payouts_status_check
        CHECK (status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunded')),

      recipient_account_number varchar(50) NOT NULL,
      recipient_account_name varchar(255) NOT NULL,
      recipient_bank_code varchar(10) NOT NULL,
      recipient_bank_name varchar(255),

      provider_transfer_id varchar(255)
        CONSTRAINT creator_payouts_provider_transfer_id_key UNIQUE,
      customer_transaction_id varchar(255)
        CONSTRAINT creator_payouts_customer_transaction_id_key UNIQUE,
      provider_recipient_id varchar(255),
      provider_quote_id varchar(255),

      exchange_rate numeric(12, 6),
      source_amount numeric(14, 2),
      source_currency varchar(3),
      provider_fee numeric(14, 2),
      provider_response jsonb,

      error_code varchar(50),
      error_message text,

      attempt_count integer NOT NULL DEFAULT 0,
      lease_token uuid,
      lease_expires_at timestamptz,

      metadata jsonb NOT NULL DEFAULT '{}'::jsonb,

      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now(),
      completed_at timestamptz,
      failed_at timestamptz,
      deleted_at timestamptz
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_creator_payouts_active_reference
      ON app.creator_payouts (reference)
      WHERE deleted_at IS NULL;
    """,
    "CREATE INDEX IF NOT EXISTS ix_creator_payouts_creator_status ON app.creator_payouts (creator_id, status);",
    "CREATE INDEX IF NOT EXISTS ix_creator_payouts_created_at ON app.creator_payouts (created_at DESC);",
    """
    CREATE INDEX IF NOT EXISTS ix_creator_payouts_pending
      ON app.creator_payouts (created_at)
      WHERE status = 'pending' AND deleted_at IS NULL;
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_creator_payouts_lease
      ON app.creator_payouts (lease_expires_at)
      WHERE status = 'processing';
    """,
    """
    CREATE TABLE IF NOT EXISTS app.payout_status_history (
      seq bigserial PRIMARY KEY,
      payout_id uuid NOT NULL REFERENCES app.creator_payouts (id),
      from_status varchar(20),
      status varchar(20) NOT NULL,
      occurred_at timestamptz NOT NULL DEFAULT now(),
      error_code varchar(50),
      error_message text,
      reason varchar(50)
    );
    """,
    "CREATE INDEX IF NOT EXISTS ix_payout_status_history_payout ON app.payout_status_history (payout_id, seq);",
    """
    CREATE OR REPLACE FUNCTION app.payout_status_history_append_only()
    RETURNS trigger AS $$
    BEGIN
      RAISE EXCEPTION 'payout_status_history is append-only';
    END;
    $$ LANGUAGE plpgsql;
    """,
    "DROP TRIGGER IF EXISTS trg_payout_status_history_append_only ON app.payout_status_history;",
    """
    CREATE TRIGGER trg_payout_status_history_append_only
      BEFORE UPDATE OR DELETE ON app.payout_status_history
      FOR EACH ROW
      EXECUTE FUNCTION app.payout_status_history_append_only();
    """,
    """
    CREATE TABLE IF NOT EXISTS app.webhook_events (
      id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
      provider varchar(20) NOT NULL,
      event_type text,
      provider_transfer_id varchar(255),
      status_raw text,
      mapped_status varchar(20),
      payout_id uuid,
      payout_status_before varchar(20),
      payout_status_after varchar(20),
      outcome varchar(40) NOT NULL,
      signature_valid boolean NOT NULL,
      request_id text,
      payload jsonb NOT NULL DEFAULT '{}'::jsonb,
      received_at timestamptz NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS ix_webhook_events_transfer ON app.webhook_events (provider_transfer_id, received_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS app.audit_log (
      id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
      actor text NOT NULL,
      action text NOT NULL,
      target_id text,
      request_id text,
      metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
      created_at timestamptz NOT NULL DEFAULT now()
    );
    """,
)

DROP_STATEMENTS: tuple[str, ...] = (
    "DROP TABLE IF EXISTS app.audit_log;",
    "DROP TABLE IF EXISTS app.webhook_events;",
    "DROP TABLE IF EXISTS app.payout_status_history;",
    "DROP FUNCTION IF EXISTS app.payout_status_history_append_only();",
    "DROP TABLE IF EXISTS app.creator_payouts;",
)


def ensure_schema(conn) -> None:
    """Idempotent; safe to call at startup and from tests."""
    with conn.cursor() as cur:
        for stmt in SCHEMA_STATEMENTS:
            cur.execute(stmt)
