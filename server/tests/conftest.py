from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)

from collections.abc import Callable, Generator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from truststartup.auth.deps import get_current_user
from truststartup.auth.security import create_access_token, hash_password
from truststartup.core.db import Base, get_db
from truststartup.main import app
from truststartup.models.startup import Startup
from truststartup.models.user import User
from truststartup.services import stripe_metrics
from truststartup.services.stripe_metrics import StripeMetrics

SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def override_get_db() -> Generator[Session, None, None]:
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fake_stripe_metrics(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        stripe_metrics,
        "fetch_stripe_metrics",
        lambda stripe_key: StripeMetrics(revenue=1234.5, mrr=99.0),
    )


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    session = TestingSessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app.dependency_overrides.clear()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def authorize(client: TestClient):
    def _apply(user: User):
        app.dependency_overrides[get_current_user] = lambda: user

    yield _apply
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(subject=str(user.id))}"}

    return _headers


def _create_user(session: Session, username: str) -> User:
    user = User(
        email=f"{username}@truststartup.io",
        username=username,
        first_name=username.title(),
        last_name="Founder",
        hashed_password=hash_password("correct-horse"),
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture()
def founder(db_session: Session) -> User:
    return _create_user(db_session, "marc")


@pytest.fixture()
def other_founder(db_session: Session) -> User:
    return _create_user(db_session, "pieter")


@pytest.fixture()
def make_startup(db_session: Session, founder: User) -> Callable[..., Startup]:
    counter = {"n": 0}

    def _make(owner: User | None = None, **fields) -> Startup:
        counter["n"] += 1
        values = {
            "owner_id": (owner or founder).id,
            "name": f"Startup {counter['n']}",
            "stripe_key": "rk_test_123456789",
            "category": "SaaS",
            "revenue": 1000.0 * counter["n"],
            "is_sponsored": False,
            "sponsor_duration_months": 0,
            "ad_views": 0,
            "ad_clicks": 0,
            "ad_generated_revenue": 0,
        }
        values.update(fields)
        startup = Startup(**values)
        db_session.add(startup)
        db_session.commit()
        db_session.refresh(startup)
        return startup

    return _make


@pytest.fixture()
def make_sponsored(make_startup: Callable[..., Startup]) -> Callable[..., Startup]:
    def _make(slot: int, expires_at: datetime, owner: User | None = None, **fields) -> Startup:
        return make_startup(
            owner=owner,
            is_sponsored=True,
            sponsor_slot=slot,
            sponsor_since=datetime(2023, 1, 1, tzinfo=timezone.utc),
            sponsor_duration_months=1,
            sponsor_expires_at=expires_at,
            **fields,
        )

    return _make
