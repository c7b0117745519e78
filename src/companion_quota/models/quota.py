"""Per-user quota counter model."""

import enum
import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.datetime import utcnow


class QuotaType(str, enum.Enum):
    """Gated resource categories."""

    PROFILE_IMAGE_GENERATION = "profile_image_generation"
    CHAT_MESSAGES = "chat_messages"
    CHAT_IMAGE_GENERATION = "chat_image_generation"

    @classmethod
    def parse(cls, value) -> "QuotaType | None":
        """Return the member for ``value`` or ``None`` if it is not a known type."""

        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class ResetStrategy(str, enum.Enum):
    """How a quota replenishes."""

    NONE = "none"
    ROLLING_WINDOW = "rolling_window"


class UserQuota(Base):
    """Usage counter for one (user, quota type) pair."""

    __tablename__ = "user_quotas"
    __table_args__ = (
        UniqueConstraint("user_id", "quota_type", name="user_quotas_user_type_unique"),
        CheckConstraint("used_count >= 0", name="user_quotas_used_count_positive"),
        CheckConstraint("limit_count > 0", name="user_quotas_limit_count_positive"),
        CheckConstraint("used_count <= limit_count", name="user_quotas_used_within_limit"),
        CheckConstraint(
            "last_reset_at IS NULL OR next_reset_at IS NULL OR last_reset_at <= next_reset_at",
            name="user_quotas_reset_order",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quota_type = Column(
        Enum(QuotaType, name="quota_type", values_callable=lambda members: [m.value for m in members]),
        nullable=False,
    )
    used_count = Column(Integer, nullable=False, default=0)
    limit_count = Column(Integer, nullable=False)
    last_reset_at = Column(DateTime)
    next_reset_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="quota_records")

    def __repr__(self) -> str:
        return (
            f"<UserQuota {self.quota_type.value if self.quota_type else None} "
            f"user={self.user_id} {self.used_count}/{self.limit_count}>"
        )
