# app/providers/factory.py
from __future__ import annotations

import logging
from typing import Any, Dict

from settings import settings

logger = logging.getLogger("payouts.gateway")

_GATEWAY_CACHE: Dict[str, Any] = {}


def get_gateway(name: str | None = None):
    """
    "wise" when an API token is configured, otherwise the deterministic mock.
    Instances are cached per name.
    """
    key = (name or ("wise" if (settings.WISE_API_TOKEN or "").strip() else "mock")).strip().lower()

    if key in _GATEWAY_CACHE:
        return _GATEWAY_CACHE[key]

    if key == "wise":
        from app.providers.wise import WiseGateway
        gateway = WiseGateway()

    elif key == "mock":
        from app.providers.mock import MockGateway
        gateway = MockGateway()
        if settings.ENV in ("staging", "prod"):
            logger.warning("payout gateway is the mock in ENV=%s", settings.ENV)

    else:
        raise ValueError(f"unknown payout gateway: {name}")

    _GATEWAY_CACHE[key] = gateway
    return gateway


def reset_gateway_cache() -> None:
    _GATEWAY_CACHE.clear()
