# deps/admin.py
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from settings import settings


def require_admin(x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key")) -> str:
    expected = (settings.ADMIN_API_KEY or "").strip()
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ADMIN_API_KEY_NOT_CONFIGURED",
        )

    if not x_admin_key or not hmac.compare_digest(x_admin_key.strip(), expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_REQUIRED",
        )
    return "admin"
