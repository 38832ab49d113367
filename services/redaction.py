from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "signature",
    "password",
    "api_key",
)

_ACCOUNT_KEY_MARKERS = (
    "account_number",
    "accountnumber",
    "iban",
)


def mask_account_number(value: str | None) -> str:
    """Keep the first 3 characters, as the rail's own logs do."""
    if not value:
        return ""
    value = str(value)
    if len(value) <= 4:
        return "***"
    return f"{value[:3]}***"


def _mask_email(match: re.Match) -> str:
    return f"{match.group(1)}***{match.group(3)}"


def redact_text(value: str) -> str:
    masked = _EMAIL_RE.sub(_mask_email, value)
    masked = _BEARER_RE.sub("Bearer [REDACTED]", masked)
    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def _is_account_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _ACCOUNT_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif _is_account_key(k) and isinstance(v, (str, int)):
            out[k] = mask_account_number(str(v))
        else:
            out[k] = redact_value(v)
    return out
