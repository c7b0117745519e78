"""Public schema exports."""

from .quota import (
    ConsumeQuotaRequest,
    ConsumeQuotaResponse,
    QuotaDisplay,
    QuotaErrorResponse,
    QuotaInfo,
    QuotaListResponse,
)

__all__ = [
    "ConsumeQuotaRequest",
    "ConsumeQuotaResponse",
    "QuotaDisplay",
    "QuotaErrorResponse",
    "QuotaInfo",
    "QuotaListResponse",
]
