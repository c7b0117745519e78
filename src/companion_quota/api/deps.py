"""Request-scoped dependencies shared by the API routers."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, status

from ..core.config import Settings, get_settings as _get_settings
from ..utils.datetime import utcnow


def get_settings() -> Settings:
    """Settings provider; overridable in tests."""

    return _get_settings()


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> UUID:
    """Resolve the caller's id as forwarded by the authentication gateway."""

    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        return UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed user identity",
        ) from exc


def get_request_time() -> datetime:
    """Wall clock for the request (naive UTC)."""

    return utcnow()
