"""creator payouts ledger, status history, webhook events, audit log

Revision ID: 0001_creator_payouts
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

from app.payouts.schema import DROP_STATEMENTS, SCHEMA_STATEMENTS


revision = "0001_creator_payouts"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    for stmt in SCHEMA_STATEMENTS:
        op.execute(stmt)


def downgrade() -> None:
    for stmt in DROP_STATEMENTS:
        op.execute(stmt)
