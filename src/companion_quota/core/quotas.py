"""Per-type quota policies derived from settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..models import QuotaType, ResetStrategy
from .config import Settings, get_settings


@dataclass(frozen=True)
class QuotaPolicy:
    """Default limit and replenishment rule for one quota type."""

    quota_type: QuotaType
    default_limit: int
    reset_strategy: ResetStrategy
    reset_window: Optional[timedelta]
    description: str

    @property
    def resets(self) -> bool:
        return self.reset_strategy is ResetStrategy.ROLLING_WINDOW and self.reset_window is not None


def build_policies(settings: Settings | None = None) -> dict[QuotaType, QuotaPolicy]:
    """Return the policy table keyed by quota type, in declaration order."""

    settings = settings or get_settings()
    window = timedelta(hours=settings.reset_window_hours)
    limits = {
        QuotaType.PROFILE_IMAGE_GENERATION: settings.profile_image_limit,
        QuotaType.CHAT_MESSAGES: settings.chat_message_limit,
        QuotaType.CHAT_IMAGE_GENERATION: settings.chat_image_limit,
    }
    return {
        quota_type: QuotaPolicy(
            quota_type=quota_type,
            default_limit=limit,
            reset_strategy=ResetStrategy.ROLLING_WINDOW,
            reset_window=window,
            description=f"Refills {settings.reset_window_hours} hours after exhaustion",
        )
        for quota_type, limit in limits.items()
    }
