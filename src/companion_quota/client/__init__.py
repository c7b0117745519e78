"""Client-side access to the quota API."""

from .quota_client import ConsumeOutcome, QuotaClient, QuotaSnapshot, default_quotas

__all__ = [
    "ConsumeOutcome",
    "QuotaClient",
    "QuotaSnapshot",
    "default_quotas",
]
