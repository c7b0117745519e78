"""Error codes and the exception raised for non-domain quota failures."""

from __future__ import annotations

MISSING_QUOTA_TYPE = "MISSING_QUOTA_TYPE"
INVALID_TYPE = "INVALID_TYPE"
INVALID_AMOUNT = "INVALID_AMOUNT"
USER_NOT_FOUND = "USER_NOT_FOUND"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
CONSUMPTION_FAILED = "CONSUMPTION_FAILED"
STATE_INCONSISTENT = "STATE_INCONSISTENT"
DB_ERROR = "DB_ERROR"
VERIFICATION_ERROR = "VERIFICATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"

STATUS_CODES = {
    MISSING_QUOTA_TYPE: 400,
    INVALID_TYPE: 400,
    INVALID_AMOUNT: 400,
    CONSUMPTION_FAILED: 400,
    USER_NOT_FOUND: 404,
    QUOTA_EXCEEDED: 429,
    STATE_INCONSISTENT: 500,
    DB_ERROR: 500,
    VERIFICATION_ERROR: 500,
    INTERNAL_ERROR: 500,
}

RETRYABLE_CODES = frozenset({DB_ERROR, VERIFICATION_ERROR, INTERNAL_ERROR, STATE_INCONSISTENT})


class QuotaError(Exception):
    """Raised for input and infrastructure failures.

    Ordinary exhaustion is not an exception; it comes back as a failed
    ``ConsumeResult``.
    """

    def __init__(self, detail: str, code: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code or STATUS_CODES.get(code, 500)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES
