# services/db_errors.py
from __future__ import annotations

import logging
from typing import Any

from fastapi.responses import JSONResponse
from psycopg2 import errors as pg_errors

from app.payouts.errors import PayoutError
from app.payouts.repository import translate_unique_violation

logger = logging.getLogger("payouts")

ERROR_HTTP_MAP: dict[str, tuple[int, str]] = {
    "VALIDATION_ERROR": (422, "Invalid payout request"),
    "DUPLICATE_REFERENCE": (409, "Duplicate reference"),
    "DUPLICATE_KEY": (409, "Duplicate key"),
    "NOT_FOUND": (404, "Payout not found"),
    "INVALID_TRANSITION": (409, "Illegal payout transition"),
    "LEASE_LOST": (409, "Lease no longer held"),
    "PAYOUT_IN_FLIGHT": (409, "Payout is being processed"),
}


def as_domain_error(exc: Exception) -> PayoutError | None:
    if isinstance(exc, PayoutError):
        return exc
    if isinstance(exc, pg_errors.UniqueViolation):
        translated = translate_unique_violation(exc)
        if isinstance(translated, PayoutError):
            return translated
    return None


def error_body(exc: PayoutError) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": exc.message, "code": exc.code}
    problems = getattr(exc, "problems", None)
    if problems:
        body["problems"] = problems
    return body


def status_for(exc: PayoutError) -> int:
    status, _ = ERROR_HTTP_MAP.get(exc.code, (500, "Internal server error"))
    return status


def payout_error_response(exc: PayoutError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=status, content=error_body(exc))


def db_error_response(exc: Exception) -> JSONResponse:
    """
    Known constraint violations become their domain error response;
    anything else fails closed.
    """
    domain = as_domain_error(exc)
    if domain is not None:
        return payout_error_response(domain)

    logger.error("unmapped_db_error type=%s", type(exc).__name__)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
