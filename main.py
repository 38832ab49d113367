#main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg2 import errors as pg_errors

from app.payouts.errors import PayoutError, ValidationError
from app.payouts.validation import problems_from_errors
from middleware import RequestContextMiddleware
from routes.admin_payouts import router as admin_payouts_router
from routes.health import router as health_router
from routes.payouts import router as payouts_router
from routes.webhooks import router as webhooks_router
from services.db_errors import db_error_response, payout_error_response
from settings import validate_env_settings

logger = logging.getLogger("payouts")


def create_app() -> FastAPI:
    validate_env_settings()

    app = FastAPI(title="Creator Payouts API", version="1.0.0")

    # -----------------------------
    # MIDDLEWARE
    # -----------------------------

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    app.include_router(health_router)
    app.include_router(payouts_router)
    app.include_router(admin_payouts_router)
    app.include_router(webhooks_router)

    @app.exception_handler(PayoutError)
    async def payout_error_handler(request: Request, exc: PayoutError):
        logger.info(
            "payout_error path=%s code=%s message=%s",
            request.url.path,
            exc.code,
            exc.message,
        )
        return payout_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return payout_error_response(ValidationError(problems_from_errors(exc.errors())))

    @app.exception_handler(pg_errors.UniqueViolation)
    async def unique_violation_handler(request: Request, exc: pg_errors.UniqueViolation):
        return db_error_response(exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
