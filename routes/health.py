# routes/health.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response

from db import get_conn
from services.metrics import render_prometheus
from settings import settings

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_creator_payouts"


def _check_db() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _current_revision() -> str | None:
    """Revision stamped by alembic, or None when the ledger was never migrated."""
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version'), to_regclass('app.creator_payouts');")
                version_table, ledger_table = cur.fetchone()
                if not version_table or not ledger_table:
                    return None
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
                return row[0] if row and row[0] else None
    except Exception:
        return None


def _resolve_env() -> str:
    return (os.getenv("ENVIRONMENT") or settings.ENV).strip()


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


def _gateway_name() -> str:
    return "wise" if (settings.WISE_API_TOKEN or "").strip() else "mock"


@router.get("/healthz")
def healthz():
    db_ok, db_error = _check_db()
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
    }


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": _resolve_env(),
        "wise_mode": settings.WISE_MODE,
        "gateway": _gateway_name(),
        "git_sha": _resolve_git_sha(),
    }


@router.get("/readyz")
def readyz():
    db_ok, db_error = _check_db()
    revision = _current_revision() if db_ok else None
    migrations_ok = revision == MIGRATION_REVISION
    return {
        "ready": bool(db_ok and migrations_ok),
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
        "migrations_ok": migrations_ok,
        "migration_revision": MIGRATION_REVISION,
        "current_revision": revision,
    }


@router.get("/metrics")
def metrics():
    return Response(content=render_prometheus(), media_type="text/plain; version=0.0.4")
