# app/providers/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.providers.base import GatewayError, classify_http_error, network_error, timeout_error

logger = logging.getLogger("payouts.gateway")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[Any]
    text: str


class HttpClient:
    def __init__(self, base_url: str, *, token: str = "", timeout_s: float = 20.0, transport: httpx.BaseTransport | None = None):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_s,
            follow_redirects=True,
            transport=transport,
        )
        self._token = token

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        h = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._token:
            h["Authorization"] = f"Bearer {self._token}"
        h.update(extra or {})
        return h

    def request(self, method: str, path: str, *, json_body: dict[str, Any] | None = None) -> Any:
        """
        Send one request and return the decoded JSON body. Non-2xx responses,
        timeouts and transport failures are raised as GatewayError.
        """
        try:
            r = self._client.request(method, path, headers=self._headers(), json=json_body)
        except httpx.TimeoutException as exc:
            raise timeout_error(f"{method} {path} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise network_error(f"{method} {path} network error: {exc}") from exc

        resp = self._wrap(r)
        logger.debug("gateway_http method=%s path=%s status=%s", method, path, resp.status_code)
        if resp.status_code >= 400:
            raise classify_http_error(resp.status_code, _error_message(resp), response=_as_dict(resp.json))
        return resp.json

    def post(self, path: str, json_body: dict[str, Any] | None = None) -> Any:
        return self.request("POST", path, json_body=json_body)

    def get(self, path: str) -> Any:
        return self.request("GET", path)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)


def _as_dict(payload: Any) -> Optional[dict[str, Any]]:
    return payload if isinstance(payload, dict) else None


def _error_message(resp: HttpResponse) -> str:
    data = _as_dict(resp.json) or {}
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("message"):
        return str(errors[0]["message"])
    if data.get("message"):
        return str(data["message"])
    if data.get("error"):
        return str(data["error"])
    return f"Wise API Error ({resp.status_code})"


__all__ = ["GatewayError", "HttpClient", "HttpResponse"]
