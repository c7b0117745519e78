"""Row-level access to ``user_quotas``.

Every mutation is a single conditional statement so that concurrent
requests for the same (user, quota type) cannot overshoot the limit or reset
a counter twice. Callers own the transaction boundary.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.quotas import QuotaPolicy
from ..models import QuotaType, User, UserQuota
from .quota_errors import DB_ERROR, VERIFICATION_ERROR, QuotaError
from .quota_validator import ResetPlan

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@contextmanager
def _store_errors(action: str, code: str = DB_ERROR) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("quota store failed to %s: %s", action, exc)
        raise QuotaError(f"Failed to {action}", code) from exc


def user_exists(session: Session, user_id: UUID) -> bool:
    """Check the account table; store failures surface as VERIFICATION_ERROR."""

    with _store_errors("verify user", code=VERIFICATION_ERROR):
        stmt = select(User.id).where(User.id == user_id)
        return session.execute(stmt).scalar_one_or_none() is not None


def find_by_user(session: Session, user_id: UUID) -> Sequence[UserQuota]:
    with _store_errors("fetch quotas"):
        stmt = select(UserQuota).where(UserQuota.user_id == user_id).order_by(UserQuota.quota_type)
        return session.execute(stmt).scalars().all()


def find_one(session: Session, user_id: UUID, quota_type: QuotaType) -> Optional[UserQuota]:
    with _store_errors("fetch quota"):
        stmt = select(UserQuota).where(
            UserQuota.user_id == user_id,
            UserQuota.quota_type == quota_type,
        )
        return session.execute(stmt).scalar_one_or_none()


def reload(session: Session, quota_id: UUID) -> Optional[UserQuota]:
    """Re-read a row, overwriting whatever the identity map holds."""

    with _store_errors("reload quota"):
        stmt = (
            select(UserQuota)
            .where(UserQuota.id == quota_id)
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one_or_none()


def create_quota(session: Session, *, user_id: UUID, policy: QuotaPolicy, now: datetime) -> UserQuota:
    """Insert the default row for ``policy`` unless one already exists.

    A concurrent creator wins silently via the unique constraint; either way
    the stored row is returned.
    """

    values = {
        "user_id": user_id,
        "quota_type": policy.quota_type,
        "used_count": 0,
        "limit_count": policy.default_limit,
        "last_reset_at": None,
        "next_reset_at": None,
        "created_at": now,
        "updated_at": now,
    }
    inserted = False
    with _store_errors("create quota"):
        dialect = session.get_bind().dialect.name
        upsert_insert = _UPSERT_INSERTS.get(dialect)
        if upsert_insert is not None:
            stmt = upsert_insert(UserQuota).values(**values).on_conflict_do_nothing(
                index_elements=["user_id", "quota_type"]
            )
            inserted = session.execute(stmt).rowcount == 1
        else:
            try:
                with session.begin_nested():
                    session.execute(insert(UserQuota).values(**values))
                inserted = True
            except IntegrityError:
                pass

    created = find_one(session, user_id, policy.quota_type)
    if created is None:
        raise QuotaError(f"Quota {policy.quota_type.value} missing after creation", DB_ERROR)
    if inserted:
        logger.info("created %s quota for user %s", policy.quota_type.value, user_id)
    else:
        logger.debug("quota %s for user %s created concurrently", policy.quota_type.value, user_id)
    return created


def apply_reset(session: Session, record: UserQuota, plan: ResetPlan, now: datetime) -> bool:
    """Write ``plan`` only if the row still has the boundary we observed.

    Returns False when another request already performed this reset.
    """

    with _store_errors("reset quota"):
        stmt = (
            update(UserQuota)
            .where(
                UserQuota.id == record.id,
                UserQuota.next_reset_at == record.next_reset_at,
            )
            .values(
                used_count=plan.used_count,
                last_reset_at=plan.last_reset_at,
                next_reset_at=plan.next_reset_at,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1


def increment(
    session: Session,
    record: UserQuota,
    amount: int,
    now: datetime,
    exhaustion_boundary: Optional[datetime] = None,
) -> bool:
    """Add ``amount`` to the counter iff the result stays within the limit.

    When ``exhaustion_boundary`` is given and this increment empties the
    quota, it replaces ``next_reset_at``.
    """

    new_used = UserQuota.used_count + amount
    values = {"used_count": new_used, "updated_at": now}
    if exhaustion_boundary is not None:
        values["next_reset_at"] = case(
            (new_used >= UserQuota.limit_count, exhaustion_boundary),
            else_=UserQuota.next_reset_at,
        )

    with _store_errors("consume quota"):
        stmt = (
            update(UserQuota)
            .where(UserQuota.id == record.id, new_used <= UserQuota.limit_count)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1
