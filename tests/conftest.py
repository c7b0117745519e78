import os

os.environ.setdefault("QUOTA_DATABASE_URL", "sqlite+pysqlite:///:memory:")

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from companion_quota.api.deps import get_request_time
from companion_quota.core.database import Base, SessionLocal, engine
from companion_quota.main import app
from companion_quota.models import QuotaType, User, UserQuota

NOW = datetime(2025, 7, 7, 12, 0, 0)
DAY = timedelta(hours=24)


@dataclass
class FrozenClock:
    now: datetime = NOW

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _create_user(session, email: str) -> User:
    user = User(email=email, display_name=email.split("@")[0])
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def user(db_session) -> User:
    return _create_user(db_session, "mina@example.com")


@pytest.fixture
def make_quota(db_session):
    """Insert a quota row directly, bypassing the service."""

    def factory(
        owner: User,
        quota_type: QuotaType,
        *,
        used: int,
        limit: int,
        last_reset_at: datetime | None = None,
        next_reset_at: datetime | None = None,
    ) -> UserQuota:
        record = UserQuota(
            user_id=owner.id,
            quota_type=quota_type,
            used_count=used,
            limit_count=limit,
            last_reset_at=last_reset_at,
            next_reset_at=next_reset_at,
            created_at=NOW - DAY,
            updated_at=NOW - DAY,
        )
        db_session.add(record)
        db_session.commit()
        return record

    return factory


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def client(clock):
    app.dependency_overrides[get_request_time] = lambda: clock.now
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def file_sessionmaker(tmp_path):
    """Sessions on a file database so that independent connections contend for real."""

    file_engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'quotas.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    Base.metadata.create_all(bind=file_engine)
    factory = sessionmaker(bind=file_engine, autoflush=False, autocommit=False, future=True)
    yield factory
    file_engine.dispose()


@pytest.fixture
def file_user(file_sessionmaker) -> User:
    session = file_sessionmaker()
    try:
        user = _create_user(session, "jun@example.com")
        session.expunge(user)
        return user
    finally:
        session.close()
