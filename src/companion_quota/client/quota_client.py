"""HTTP client used by feature handlers to read and consume quotas.

Every consumption round-trips to the quota API; nothing is cached between
calls. When the API cannot be reached the client says so explicitly
(``QuotaSnapshot.degraded`` / ``ConsumeOutcome.retryable``) rather than
pretending the user has fresh quota.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import UUID

import httpx

from ..core.config import Settings, get_settings
from ..core.quotas import QuotaPolicy, build_policies
from ..models import QuotaType
from ..schemas import QuotaDisplay, QuotaListResponse
from ..services.quota_errors import QUOTA_EXCEEDED, RETRYABLE_CODES

logger = logging.getLogger(__name__)

LIMIT_REACHED_MESSAGE = "You've reached the limit for now. Please try again after it refills."
RETRY_MESSAGE = "Something went wrong while checking your quota. Please try again shortly."
NETWORK_MESSAGE = "A network error occurred. Please try again shortly."
UNKNOWN_OUTCOME_MESSAGE = (
    "We couldn't confirm whether the request went through. "
    "Check your remaining quota before trying again."
)


@dataclass
class QuotaSnapshot:
    """Quotas as last reported by the API, or placeholders when ``degraded``."""

    quotas: List[QuotaDisplay]
    degraded: bool = False
    error: Optional[str] = None

    def find(self, quota_type: QuotaType | str) -> Optional[QuotaDisplay]:
        wanted = QuotaType.parse(quota_type)
        return next((quota for quota in self.quotas if quota.type == wanted), None)


@dataclass
class ConsumeOutcome:
    """Caller-facing verdict for a consumption attempt.

    The gated action must only run when ``success`` is true.
    """

    success: bool
    message: str
    error_code: Optional[str] = None
    retryable: bool = False
    outcome_unknown: bool = False
    used: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    quota: Optional[QuotaDisplay] = None
    details: Dict[str, Any] = field(default_factory=dict)


def default_quotas(policies: Mapping[QuotaType, QuotaPolicy] | None = None) -> List[QuotaDisplay]:
    """Placeholder displays used when the API is unavailable."""

    policies = policies or build_policies()
    return [
        QuotaDisplay(
            type=policy.quota_type,
            used=0,
            limit=policy.default_limit,
            can_use=True,
            next_reset_at=None,
            reset_in_hours=None,
            percentage=0,
        )
        for policy in policies.values()
    ]


class QuotaClient:
    """Facade over the quota API for UI-adjacent and feature code."""

    def __init__(
        self,
        http_client: httpx.Client,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.2,
        policies: Mapping[QuotaType, QuotaPolicy] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._http = http_client
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._policies = policies
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "QuotaClient":
        settings = settings or get_settings()
        http_client = httpx.Client(
            base_url=settings.service_base_url,
            timeout=settings.client_timeout_seconds,
        )
        kwargs.setdefault("max_attempts", settings.client_max_attempts)
        kwargs.setdefault("policies", build_policies(settings))
        return cls(http_client, **kwargs)

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()

    def __enter__(self) -> "QuotaClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @staticmethod
    def _headers(user_id: UUID | str) -> Dict[str, str]:
        return {"X-User-Id": str(user_id)}

    def _backoff(self, attempt: int) -> None:
        if attempt < self._max_attempts and self._backoff_seconds > 0:
            self._sleep(self._backoff_seconds * 2 ** (attempt - 1))

    def _fetch_quotas(self, user_id: UUID | str) -> List[QuotaDisplay]:
        attempt = 1
        while True:
            try:
                response = self._http.get("/quotas", headers=self._headers(user_id))
                response.raise_for_status()
                return QuotaListResponse.model_validate(response.json()).quotas
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code < 500 or attempt >= self._max_attempts:
                    raise
                error: httpx.HTTPError = exc
            except httpx.TransportError as exc:
                if attempt >= self._max_attempts:
                    raise
                error = exc
            logger.warning("quota fetch attempt %s/%s failed: %s", attempt, self._max_attempts, error)
            self._backoff(attempt)
            attempt += 1

    def get_user_quotas(self, user_id: UUID | str) -> QuotaSnapshot:
        """Fetch every quota for ``user_id``.

        On failure returns placeholder quotas flagged ``degraded=True`` so the
        UI keeps rendering while callers can still tell it is not real data.
        """

        try:
            quotas = self._fetch_quotas(user_id)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("quota API unavailable for user %s, serving defaults: %s", user_id, exc)
            return QuotaSnapshot(quotas=default_quotas(self._policies), degraded=True, error=str(exc))

        logger.debug("fetched %s quotas for user %s", len(quotas), user_id)
        return QuotaSnapshot(quotas=quotas)

    def check_quota_available(self, user_id: UUID | str, quota_type: QuotaType | str) -> bool:
        """True only when the API confirms the quota has headroom."""

        snapshot = self.get_user_quotas(user_id)
        if snapshot.degraded:
            return False
        quota = snapshot.find(quota_type)
        return bool(quota and quota.can_use)

    def consume_quota(
        self,
        user_id: UUID | str,
        quota_type: QuotaType | str,
        amount: int = 1,
    ) -> ConsumeOutcome:
        """Ask the API to consume ``amount`` units of ``quota_type``.

        Only failures that happen before the request leaves this process are
        retried. A timeout after sending leaves the outcome unknown; instead
        of sending the increment again the client reads the quota back and
        reports what it sees.
        """

        type_value = quota_type.value if isinstance(quota_type, QuotaType) else quota_type
        payload = {"quota_type": type_value, "amount": amount}

        response: httpx.Response | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._http.post("/quotas/consume", json=payload, headers=self._headers(user_id))
                break
            except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                logger.warning(
                    "consume %s attempt %s/%s could not connect: %s",
                    type_value,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                self._backoff(attempt)
            except httpx.TransportError as exc:
                logger.warning("consume %s for user %s has unknown outcome: %s", type_value, user_id, exc)
                return self._unknown_outcome(user_id, type_value)

        if response is None:
            return ConsumeOutcome(success=False, message=NETWORK_MESSAGE, retryable=True)
        return self._interpret(response, type_value)

    def _unknown_outcome(self, user_id: UUID | str, quota_type: str) -> ConsumeOutcome:
        snapshot = self.get_user_quotas(user_id)
        quota = None if snapshot.degraded else snapshot.find(quota_type)
        return ConsumeOutcome(
            success=False,
            message=UNKNOWN_OUTCOME_MESSAGE,
            retryable=True,
            outcome_unknown=True,
            used=quota.used if quota else None,
            limit=quota.limit if quota else None,
            remaining=quota.limit - quota.used if quota else None,
            quota=quota,
        )

    def _interpret(self, response: httpx.Response, quota_type: str) -> ConsumeOutcome:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        error_code = body.get("error_code")
        counts = {key: body.get(key) for key in ("used", "limit", "remaining")}

        if response.is_success and body.get("success"):
            logger.info(
                "consumed %s quota (%s/%s)",
                quota_type,
                counts["used"],
                counts["limit"],
            )
            return ConsumeOutcome(
                success=True,
                message=body.get("message") or f"Quota used ({counts['used']}/{counts['limit']})",
                details=body.get("quota_info") or {},
                **counts,
            )

        if response.status_code == 429 or error_code == QUOTA_EXCEEDED:
            return ConsumeOutcome(
                success=False,
                message=body.get("message") or LIMIT_REACHED_MESSAGE,
                error_code=error_code or QUOTA_EXCEEDED,
                retryable=False,
                details=body.get("quota_info") or {},
                **counts,
            )

        if response.status_code >= 500 or error_code in RETRYABLE_CODES:
            logger.error("quota API failed consuming %s: %s %s", quota_type, response.status_code, body)
            return ConsumeOutcome(
                success=False,
                message=RETRY_MESSAGE,
                error_code=error_code,
                retryable=True,
            )

        logger.warning("quota API rejected consume %s: %s %s", quota_type, response.status_code, body)
        return ConsumeOutcome(
            success=False,
            message=body.get("message") or body.get("detail") or "Quota request was rejected.",
            error_code=error_code,
            retryable=False,
            **counts,
        )
