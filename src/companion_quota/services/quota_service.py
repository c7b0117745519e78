"""Domain logic for reading and consuming user quotas."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.quotas import QuotaPolicy, build_policies
from ..models import QuotaType, UserQuota
from ..schemas import QuotaDisplay
from ..utils.datetime import as_naive_utc, hours_until, utcnow
from . import quota_store, quota_validator
from .quota_errors import (
    CONSUMPTION_FAILED,
    INVALID_AMOUNT,
    INVALID_TYPE,
    MISSING_QUOTA_TYPE,
    QUOTA_EXCEEDED,
    STATE_INCONSISTENT,
    USER_NOT_FOUND,
    QuotaError,
)

logger = logging.getLogger(__name__)

Policies = Mapping[QuotaType, QuotaPolicy]


@dataclass
class ConsumeResult:
    """Outcome of :func:`consume_quota`."""

    success: bool
    message: str
    used: int
    limit: int
    remaining: int
    error_code: Optional[str] = None
    quota: Optional[QuotaDisplay] = None


def _now(current_time: datetime | None) -> datetime:
    return as_naive_utc(current_time) if current_time else utcnow()


def _ensure_user(session: Session, user_id: UUID) -> None:
    if not quota_store.user_exists(session, user_id):
        raise QuotaError(f"User not found: {user_id}", USER_NOT_FOUND)


def parse_quota_type(value: Any) -> QuotaType:
    """Resolve a caller-supplied type name, rejecting blanks and unknowns."""

    if value is None or (isinstance(value, str) and not value.strip()):
        raise QuotaError("quota_type is required", MISSING_QUOTA_TYPE)
    quota_type = QuotaType.parse(value)
    if quota_type is None:
        raise QuotaError(f"Unknown quota type: {value}", INVALID_TYPE)
    return quota_type


def validate_amount(amount: Any, max_amount: int | None = None) -> int:
    max_amount = max_amount or get_settings().max_consume_amount
    if isinstance(amount, bool) or not isinstance(amount, int) or not 1 <= amount <= max_amount:
        raise QuotaError(f"Amount must be between 1 and {max_amount}", INVALID_AMOUNT)
    return amount


def to_display(record: UserQuota, now: datetime) -> QuotaDisplay:
    """Project a record into its read-only display form."""

    return QuotaDisplay(
        type=record.quota_type,
        used=record.used_count,
        limit=record.limit_count,
        can_use=quota_validator.can_consume(record),
        next_reset_at=record.next_reset_at,
        reset_in_hours=hours_until(record.next_reset_at, now),
        percentage=quota_validator.percentage(record),
    )


def exhausted_message(record: UserQuota, policy: QuotaPolicy, now: datetime) -> str:
    """User-facing text for a rejected consumption."""

    label = record.quota_type.value.replace("_", " ")
    if not policy.resets:
        return f"The {label} limit has been reached and does not refill."
    hours = hours_until(record.next_reset_at, now)
    if record.next_reset_at is not None and hours is None:
        return f"The {label} limit refills momentarily. Please try again shortly."
    if hours is not None:
        return f"The {label} limit has been reached. It refills in {hours} hour(s)."
    return f"The {label} limit has been reached."


def reconcile(session: Session, record: UserQuota, *, now: datetime, policy: QuotaPolicy) -> UserQuota:
    """Apply a due automatic reset to ``record`` and return the stored row.

    The write is conditional on the boundary we read, so two requests
    evaluating the same expired row reset it once; the loser reloads the
    winner's result.
    """

    plan = quota_validator.compute_next_reset(record, now, policy)
    if plan is None:
        return record

    if quota_store.apply_reset(session, record, plan, now):
        logger.info(
            "reset %s quota for user %s (%s used, next reset %s)",
            record.quota_type.value,
            record.user_id,
            record.used_count,
            plan.next_reset_at.isoformat() if plan.next_reset_at else None,
        )
    else:
        logger.debug("reset of quota %s already applied by a concurrent request", record.id)

    refreshed = quota_store.reload(session, record.id)
    if refreshed is None:
        raise QuotaError(f"Quota {record.id} disappeared during reset", STATE_INCONSISTENT)
    return refreshed


def ensure_default_quotas(
    session: Session,
    *,
    user_id: UUID,
    current_time: datetime | None = None,
    policies: Policies | None = None,
) -> list[UserQuota]:
    """Create any missing quota rows for ``user_id`` and return all of them.

    Used on account creation and as first-touch initialization.
    """

    policies = policies or build_policies()
    now = _now(current_time)
    existing = {record.quota_type: record for record in quota_store.find_by_user(session, user_id)}
    for quota_type, policy in policies.items():
        if quota_type not in existing:
            existing[quota_type] = quota_store.create_quota(session, user_id=user_id, policy=policy, now=now)
    return [existing[quota_type] for quota_type in policies if quota_type in existing]


def get_user_quotas(
    session: Session,
    *,
    user_id: UUID,
    current_time: datetime | None = None,
    policies: Policies | None = None,
) -> list[QuotaDisplay]:
    """Return display rows for every quota type, resetting expired counters."""

    policies = policies or build_policies()
    now = _now(current_time)
    _ensure_user(session, user_id)

    records = ensure_default_quotas(session, user_id=user_id, current_time=now, policies=policies)
    displays = []
    for record in records:
        record = reconcile(session, record, now=now, policy=policies[record.quota_type])
        displays.append(to_display(record, now))
    return displays


def check_quota_availability(
    session: Session,
    *,
    user_id: UUID,
    quota_type: Any,
    current_time: datetime | None = None,
    policies: Policies | None = None,
) -> QuotaDisplay:
    """Report one quota's state without consuming from it."""

    quota_type = parse_quota_type(quota_type)
    policies = policies or build_policies()
    policy = policies[quota_type]
    now = _now(current_time)
    _ensure_user(session, user_id)

    record = quota_store.find_one(session, user_id, quota_type)
    if record is None:
        record = quota_store.create_quota(session, user_id=user_id, policy=policy, now=now)
    record = reconcile(session, record, now=now, policy=policy)
    return to_display(record, now)


def consume_quota(
    session: Session,
    *,
    user_id: UUID,
    quota_type: Any,
    amount: Any = 1,
    current_time: datetime | None = None,
    policies: Policies | None = None,
) -> ConsumeResult:
    """Consume ``amount`` units of ``quota_type`` for ``user_id``.

    Input problems and store failures raise :class:`QuotaError`. Running
    out of quota is an ordinary outcome returned as a failed result; in that
    case the counter is left untouched.
    """

    quota_type = parse_quota_type(quota_type)
    amount = validate_amount(amount)
    policies = policies or build_policies()
    policy = policies[quota_type]
    now = _now(current_time)

    _ensure_user(session, user_id)

    record = quota_store.find_one(session, user_id, quota_type)
    if record is None:
        record = quota_store.create_quota(session, user_id=user_id, policy=policy, now=now)
    record = reconcile(session, record, now=now, policy=policy)

    verdict = quota_validator.validate(record, now)
    if not verdict.sane:
        logger.error("quota %s for user %s failed sanity checks: %s", record.id, user_id, verdict.reason)
        raise QuotaError(f"Quota record is inconsistent: {verdict.reason}", STATE_INCONSISTENT)

    if not quota_validator.can_consume(record, amount):
        return _rejected(record, policy, now)

    boundary = quota_validator.exhaustion_reset_at(record, now, policy)
    if not quota_store.increment(session, record, amount, now, exhaustion_boundary=boundary):
        current = quota_store.reload(session, record.id)
        if current is None:
            logger.error("quota %s vanished before consumption for user %s", record.id, user_id)
            return ConsumeResult(
                success=False,
                message="Quota could not be consumed",
                used=record.used_count,
                limit=record.limit_count,
                remaining=0,
                error_code=CONSUMPTION_FAILED,
            )
        logger.info(
            "lost race consuming %s for user %s (%s/%s)",
            quota_type.value,
            user_id,
            current.used_count,
            current.limit_count,
        )
        return _rejected(current, policy, now)

    updated = quota_store.reload(session, record.id)
    if updated is None:
        logger.error("quota %s missing after consumption for user %s", record.id, user_id)
        raise QuotaError("Quota state inconsistent after consumption", STATE_INCONSISTENT)

    logger.info(
        "consumed %s %s for user %s (%s/%s)",
        amount,
        quota_type.value,
        user_id,
        updated.used_count,
        updated.limit_count,
    )
    return ConsumeResult(
        success=True,
        message=f"Successfully consumed {amount} {quota_type.value} quota",
        used=updated.used_count,
        limit=updated.limit_count,
        remaining=updated.limit_count - updated.used_count,
        quota=to_display(updated, now),
    )


def _rejected(record: UserQuota, policy: QuotaPolicy, now: datetime) -> ConsumeResult:
    logger.info(
        "quota %s exhausted for user %s (%s/%s)",
        record.quota_type.value,
        record.user_id,
        record.used_count,
        record.limit_count,
    )
    return ConsumeResult(
        success=False,
        message=exhausted_message(record, policy, now),
        used=record.used_count,
        limit=record.limit_count,
        remaining=max(record.limit_count - record.used_count, 0),
        error_code=QUOTA_EXCEEDED,
        quota=to_display(record, now),
    )


def get_debug_info(
    session: Session,
    *,
    user_id: UUID | None = None,
    current_time: datetime | None = None,
    policies: Policies | None = None,
) -> dict[str, Any]:
    """Configuration and per-record diagnostics; read-only."""

    policies = policies or build_policies()
    now = _now(current_time)
    info: dict[str, Any] = {
        "checked_at": now.isoformat(),
        "policies": [
            {
                "type": policy.quota_type.value,
                "default_limit": policy.default_limit,
                "reset_strategy": policy.reset_strategy.value,
                "reset_window_hours": (
                    policy.reset_window.total_seconds() / 3600 if policy.reset_window else None
                ),
                "description": policy.description,
            }
            for policy in policies.values()
        ],
    }
    if user_id is None:
        return info

    records = quota_store.find_by_user(session, user_id)
    entries = []
    for record in records:
        verdict = quota_validator.validate(record, now)
        entries.append(
            {
                "id": str(record.id),
                "type": record.quota_type.value,
                "used": record.used_count,
                "limit": record.limit_count,
                "last_reset_at": record.last_reset_at.isoformat() if record.last_reset_at else None,
                "next_reset_at": record.next_reset_at.isoformat() if record.next_reset_at else None,
                "can_consume": verdict.can_consume,
                "reason": verdict.reason,
                "should_auto_reset": quota_validator.should_auto_reset(record, now),
            }
        )
    info["user_id"] = str(user_id)
    info["quotas"] = entries
    return info
