# middleware.py
from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import set_request_id

logger = logging.getLogger("payouts.http")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or str(uuid.uuid4())
        start = time.perf_counter()

        # attach to request state and the logging context
        request.state.request_id = req_id
        set_request_id(req_id)

        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = req_id
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            route = request.scope.get("route")
            increment_http_requests(getattr(route, "path", request.url.path), status)
            logger.info(
                "http_request_end request_id=%s method=%s path=%s status=%s duration_ms=%s",
                req_id,
                request.method,
                request.url.path,
                status,
                duration_ms,
            )
            set_request_id(None)
