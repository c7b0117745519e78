"""Pydantic schemas for quota endpoints."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import QuotaType


class QuotaDisplay(BaseModel):
    """Read projection of a quota row; computed per request, never stored."""

    model_config = ConfigDict(populate_by_name=True)

    type: QuotaType
    used: int = Field(..., ge=0)
    limit: int = Field(..., gt=0)
    can_use: bool = Field(..., alias="canUse")
    next_reset_at: Optional[datetime] = Field(None, alias="nextResetAt")
    reset_in_hours: Optional[int] = Field(None, alias="resetInHours")
    percentage: float = Field(..., ge=0, le=100)


class QuotaListResponse(BaseModel):
    """Response body for GET /quotas."""

    quotas: List[QuotaDisplay]


class ConsumeQuotaRequest(BaseModel):
    """Request body for POST /quotas/consume.

    Both fields are checked by the service so that failures carry a quota
    error code instead of a generic validation error.
    """

    quota_type: Any = Field(None, description="Quota type to consume.")
    amount: Any = Field(1, description="Units to consume (1-10).")


class QuotaInfo(BaseModel):
    """State of the consumed quota after the call."""

    used: int
    limit: int
    remaining: int
    can_use: bool
    next_reset_at: Optional[datetime] = None
    reset_in_hours: Optional[int] = None


class ConsumeQuotaResponse(BaseModel):
    """Response body for POST /quotas/consume."""

    success: bool
    message: str
    used: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    error_code: Optional[str] = None
    quota_info: Optional[QuotaInfo] = None


class QuotaErrorResponse(BaseModel):
    """Body returned for rejected requests."""

    success: bool = False
    message: str
    error_code: str
