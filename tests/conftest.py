"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.rate_limiter import rate_limiter
from app.core.tenant_settings import TenantSettings
from app.core.timeutils import utcnow
import app.models  # noqa: F401
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.payments.mock_provider import MockPaymentProvider
from app.services.auth import hash_password
from tests.fixtures_data import TEST_PASSWORD


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def payment_provider() -> MockPaymentProvider:
    return MockPaymentProvider()


@pytest.fixture
def tenant_settings() -> TenantSettings:
    return TenantSettings(default_tenant_id=None)


@pytest.fixture(scope="function")
def client(db_session, payment_provider, tenant_settings, monkeypatch) -> Generator[TestClient, None, None]:
    from app import deps, main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    def override_get_db():
        yield db_session

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[deps.get_payment_provider] = lambda: payment_provider
    main.app.dependency_overrides[deps.get_tenant_settings] = lambda: tenant_settings
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = {"value": 0}

    def _make_user(
        role: UserRole = UserRole.CUSTOMER,
        *,
        email: str | None = None,
        default_tenant_id: int | None = None,
        password: str = TEST_PASSWORD,
        **fields,
    ) -> User:
        counter["value"] += 1
        user = User(
            name=fields.pop("name", f"User {counter['value']}"),
            email=email or f"user{counter['value']}@example.com",
            password_hash=hash_password(password),
            role=role.value,
            default_tenant_id=default_tenant_id,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_tenant(db_session, make_user):
    def _make_tenant(owner: User | None = None, **fields) -> Tenant:
        owner = owner or make_user(UserRole.TENANT_OWNER)
        tenant = Tenant(
            owner_id=owner.id,
            name=fields.pop("name", f"Restaurant {owner.id}"),
            is_active=fields.pop("is_active", True),
            subscription_status=fields.pop("subscription_status", "active"),
            subscription_start_date=fields.pop("subscription_start_date", utcnow() - timedelta(days=1)),
            **fields,
        )
        db_session.add(tenant)
        db_session.commit()
        db_session.refresh(tenant)
        return tenant

    return _make_tenant

