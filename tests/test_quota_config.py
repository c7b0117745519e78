from datetime import datetime, timedelta, timezone
from pathlib import Path

import companion_quota
from companion_quota.client import QuotaClient
from companion_quota.core.config import Settings
from companion_quota.core.quotas import build_policies
from companion_quota.models import QuotaType, ResetStrategy
from companion_quota.utils.datetime import as_naive_utc, hours_until

from .conftest import NOW


def test_default_policies():
    policies = build_policies(Settings())

    assert list(policies) == list(QuotaType)
    assert [p.default_limit for p in policies.values()] == [1, 50, 5]
    assert all(p.reset_strategy is ResetStrategy.ROLLING_WINDOW for p in policies.values())
    assert all(p.reset_window == timedelta(hours=24) for p in policies.values())


def test_policies_follow_settings(monkeypatch):
    monkeypatch.setenv("QUOTA_CHAT_MESSAGE_LIMIT", "80")
    monkeypatch.setenv("QUOTA_RESET_WINDOW_HOURS", "12")

    policies = build_policies(Settings())

    assert policies[QuotaType.CHAT_MESSAGES].default_limit == 80
    assert policies[QuotaType.CHAT_IMAGE_GENERATION].reset_window == timedelta(hours=12)


def test_client_from_settings():
    settings = Settings(service_base_url="http://quota.internal/api/v1", client_max_attempts=5)

    with QuotaClient.from_settings(settings) as client:
        assert str(client._http.base_url) == "http://quota.internal/api/v1/"
        assert client._max_attempts == 5


def test_aware_times_are_normalised():
    aware = datetime(2025, 7, 7, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert as_naive_utc(aware) == NOW
    assert as_naive_utc(NOW) == NOW
    assert as_naive_utc(None) is None


def test_hours_until_rounds_up():
    assert hours_until(NOW + timedelta(hours=3, minutes=1), NOW) == 4
    assert hours_until(NOW + timedelta(hours=3), NOW) == 3
    assert hours_until(NOW, NOW) is None
    assert hours_until(None, NOW) is None


def test_package_sources_indent_with_spaces():
    package_root = Path(companion_quota.__file__).parent

    tabbed = [
        f"{path.relative_to(package_root)}:{number}"
        for path in sorted(package_root.rglob("*.py"))
        for number, line in enumerate(path.read_text().splitlines(), start=1)
        if line.startswith("\t")
    ]

    assert tabbed == []
