"""Pure decision logic for quota records.

Nothing here touches the database. Functions accept anything exposing the
``UserQuota`` attributes, which keeps them usable on detached rows and on
plain test doubles.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.quotas import QuotaPolicy
from ..models import QuotaType


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`validate`; callers branch on it instead of catching."""

    can_consume: bool
    reason: Optional[str] = None
    reset_available_at: Optional[datetime] = None
    sane: bool = True


@dataclass(frozen=True)
class ResetPlan:
    """Column values to write when a reset fires."""

    used_count: int
    last_reset_at: datetime
    next_reset_at: Optional[datetime]


def _counts_sane(record) -> bool:
    return (
        isinstance(record.used_count, int)
        and isinstance(record.limit_count, int)
        and record.used_count >= 0
        and record.limit_count > 0
    )


def can_consume(record, amount: int = 1) -> bool:
    """Return True when ``amount`` units fit under the limit."""

    if not _counts_sane(record) or amount <= 0:
        return False
    return record.used_count + amount <= record.limit_count


def should_auto_reset(record, now: datetime) -> bool:
    return record.next_reset_at is not None and now >= record.next_reset_at


def compute_next_reset(record, now: datetime, policy: QuotaPolicy) -> Optional[ResetPlan]:
    """Plan the reset for ``record`` at ``now``, or ``None`` if nothing is due.

    A reset evaluated within one window of its boundary ``T`` lands on
    ``T + window``. Anything later re-anchors on ``now + window``.
    """

    if not policy.resets or not should_auto_reset(record, now):
        return None

    next_reset_at = record.next_reset_at + policy.reset_window
    if next_reset_at <= now:
        next_reset_at = now + policy.reset_window
    return ResetPlan(used_count=0, last_reset_at=now, next_reset_at=next_reset_at)


def exhaustion_reset_at(record, now: datetime, policy: QuotaPolicy) -> Optional[datetime]:
    """Boundary to stamp when a consumption empties the quota.

    Always a full window from ``now``, whatever boundary the row carried.
    """

    if not policy.resets:
        return None
    return now + policy.reset_window


def validate(record, now: datetime | None = None) -> ValidationResult:
    """Sanity-check ``record`` and decide whether one more unit may be used."""

    errors = []
    if QuotaType.parse(record.quota_type) is None:
        errors.append("unknown quota type")
    if not isinstance(record.used_count, int) or record.used_count < 0:
        errors.append("used count must be a non-negative integer")
    if not isinstance(record.limit_count, int) or record.limit_count <= 0:
        errors.append("limit count must be a positive integer")
    if not errors and record.used_count > record.limit_count:
        errors.append(f"used count {record.used_count} exceeds limit {record.limit_count}")
    if (
        record.last_reset_at is not None
        and record.next_reset_at is not None
        and record.last_reset_at > record.next_reset_at
    ):
        errors.append("last reset is after next reset")

    if errors:
        return ValidationResult(
            can_consume=False,
            reason="; ".join(errors),
            reset_available_at=record.next_reset_at,
            sane=False,
        )

    if not can_consume(record):
        reset_at = record.next_reset_at
        if now is not None and reset_at is not None and reset_at <= now:
            reason = "quota exhausted; reset is due"
        else:
            reason = "quota exhausted"
        return ValidationResult(can_consume=False, reason=reason, reset_available_at=reset_at)

    return ValidationResult(can_consume=True, reset_available_at=record.next_reset_at)


def percentage(record) -> float:
    """Usage as a 0-100 figure for display; never written back."""

    if not record.limit_count or record.limit_count <= 0:
        return 0.0
    return min(100.0, record.used_count / record.limit_count * 100)
