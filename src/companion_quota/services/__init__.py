"""Service layer exports."""

from . import (
    quota_errors,
    quota_service,
    quota_store,
    quota_validator,
)

__all__ = [
    "quota_errors",
    "quota_service",
    "quota_store",
    "quota_validator",
]
