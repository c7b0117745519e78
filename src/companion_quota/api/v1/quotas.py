"""Quota endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...core.config import Settings
from ...core.database import get_db
from ...schemas import (
    ConsumeQuotaRequest,
    ConsumeQuotaResponse,
    QuotaDisplay,
    QuotaErrorResponse,
    QuotaInfo,
    QuotaListResponse,
)
from ...services import quota_service
from ...services.quota_errors import INTERNAL_ERROR, STATUS_CODES, QuotaError
from ..deps import get_current_user_id, get_request_time, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotas", tags=["quotas"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _error_response(exc: QuotaError) -> JSONResponse:
    body = QuotaErrorResponse(message=exc.detail, error_code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=NO_CACHE_HEADERS)


def _internal_error() -> JSONResponse:
    return _error_response(
        QuotaError("Internal server error occurred while processing quota", INTERNAL_ERROR)
    )


@router.get(
    "",
    response_model=QuotaListResponse,
    summary="List the caller's quotas",
    responses={
        200: {
            "description": "Every quota type with current usage",
            "content": {
                "application/json": {
                    "example": {
                        "quotas": [
                            {
                                "type": "profile_image_generation",
                                "used": 0,
                                "limit": 1,
                                "canUse": True,
                                "nextResetAt": None,
                                "resetInHours": None,
                                "percentage": 0,
                            },
                            {
                                "type": "chat_image_generation",
                                "used": 3,
                                "limit": 5,
                                "canUse": True,
                                "nextResetAt": "2025-07-08T10:30:00",
                                "resetInHours": 15,
                                "percentage": 60,
                            },
                        ]
                    }
                }
            },
        },
        401: {"description": "Missing or malformed user identity"},
        404: {"model": QuotaErrorResponse, "description": "User not found"},
        500: {"model": QuotaErrorResponse, "description": "Store failure"},
    },
)
def list_quotas(
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    now: datetime = Depends(get_request_time),
    db: Session = Depends(get_db),
):
    """Return all quotas for the caller, applying any due resets."""

    try:
        quotas = quota_service.get_user_quotas(db, user_id=user_id, current_time=now)
        db.commit()
    except QuotaError as exc:
        db.rollback()
        logger.warning("listing quotas for %s failed: %s (%s)", user_id, exc.detail, exc.code)
        return _error_response(exc)
    except Exception:
        db.rollback()
        logger.exception("unexpected error listing quotas for %s", user_id)
        return _internal_error()

    response.headers.update(NO_CACHE_HEADERS)
    return QuotaListResponse(quotas=quotas)


@router.post(
    "/consume",
    response_model=ConsumeQuotaResponse,
    response_model_exclude_none=True,
    summary="Consume quota",
    responses={
        200: {
            "description": "Quota consumed",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "message": "Successfully consumed 1 chat_messages quota",
                        "used": 12,
                        "limit": 50,
                        "remaining": 38,
                        "quota_info": {
                            "used": 12,
                            "limit": 50,
                            "remaining": 38,
                            "can_use": True,
                        },
                    }
                }
            },
        },
        400: {"model": QuotaErrorResponse, "description": "Invalid quota type or amount"},
        401: {"description": "Missing or malformed user identity"},
        404: {"model": QuotaErrorResponse, "description": "User not found"},
        429: {"model": ConsumeQuotaResponse, "description": "Quota exhausted"},
        500: {"model": QuotaErrorResponse, "description": "Store or verification failure"},
    },
)
def consume_quota(
    payload: ConsumeQuotaRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    now: datetime = Depends(get_request_time),
    db: Session = Depends(get_db),
):
    """Consume units of a quota before performing the gated action.

    Example request body::

        {
            "quota_type": "chat_messages",
            "amount": 1
        }
    """

    amount = 1 if payload.amount is None else payload.amount
    try:
        result = quota_service.consume_quota(
            db,
            user_id=user_id,
            quota_type=payload.quota_type,
            amount=amount,
            current_time=now,
        )
        db.commit()
    except QuotaError as exc:
        db.rollback()
        logger.warning("consume %s for %s rejected: %s (%s)", payload.quota_type, user_id, exc.detail, exc.code)
        return _error_response(exc)
    except Exception:
        db.rollback()
        logger.exception("unexpected error consuming %s for %s", payload.quota_type, user_id)
        return _internal_error()

    quota_info = None
    if result.quota is not None:
        quota_info = QuotaInfo(
            used=result.quota.used,
            limit=result.quota.limit,
            remaining=result.quota.limit - result.quota.used,
            can_use=result.quota.can_use,
            next_reset_at=result.quota.next_reset_at,
            reset_in_hours=result.quota.reset_in_hours,
        )

    response.headers.update(NO_CACHE_HEADERS)
    if not result.success:
        response.status_code = STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST)

    return ConsumeQuotaResponse(
        success=result.success,
        message=result.message,
        used=result.used,
        limit=result.limit,
        remaining=result.remaining,
        error_code=result.error_code,
        quota_info=quota_info,
    )


@router.get(
    "/debug",
    summary="Quota diagnostics",
    responses={404: {"description": "Debug routes are disabled"}},
)
def quota_debug(
    user_id: UUID = Depends(get_current_user_id),
    now: datetime = Depends(get_request_time),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    """Show configured policies and the caller's raw quota rows."""

    if not settings.enable_debug_routes:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    try:
        return quota_service.get_debug_info(db, user_id=user_id, current_time=now)
    except QuotaError as exc:
        return _error_response(exc)


@router.get(
    "/{quota_type}",
    response_model=QuotaDisplay,
    summary="Check one quota",
    responses={
        400: {"model": QuotaErrorResponse, "description": "Unknown quota type"},
        404: {"model": QuotaErrorResponse, "description": "User not found"},
    },
)
def check_quota(
    quota_type: str,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    now: datetime = Depends(get_request_time),
    db: Session = Depends(get_db),
):
    """Report whether the caller can use ``quota_type`` right now, without consuming it."""

    try:
        display = quota_service.check_quota_availability(
            db,
            user_id=user_id,
            quota_type=quota_type,
            current_time=now,
        )
        db.commit()
    except QuotaError as exc:
        db.rollback()
        return _error_response(exc)
    except Exception:
        db.rollback()
        logger.exception("unexpected error checking %s for %s", quota_type, user_id)
        return _internal_error()

    response.headers.update(NO_CACHE_HEADERS)
    return display
