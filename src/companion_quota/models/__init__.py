"""SQLAlchemy models for the companion quota service."""

from .quota import QuotaType, ResetStrategy, UserQuota
from .user import User

__all__ = [
    "QuotaType",
    "ResetStrategy",
    "User",
    "UserQuota",
]
