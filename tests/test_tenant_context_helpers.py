from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.core.errors import (
    SubscriptionInvalid,
    TenantIdRequired,
    TenantInactive,
    TenantNotFound,
    TenantNotFoundForOwner,
)
from app.core.timeutils import utcnow
from app.models.user import UserRole
from app.services.tenant_context import TenantContextLoader, validate_subscription


def test_loader_returns_none_without_tenant_when_optional(db_session):
    assert TenantContextLoader.load(db_session, tenant_id=None) is None


def test_loader_requires_tenant_id_when_required(db_session):
    with pytest.raises(TenantIdRequired) as exc:
        TenantContextLoader.load(db_session, tenant_id=None, required=True)

    assert exc.value.status_code == 400


def test_loader_unknown_tenant_is_not_found(db_session):
    with pytest.raises(TenantNotFound) as exc:
        TenantContextLoader.load(db_session, tenant_id=999)

    assert exc.value.status_code == 404


def test_loader_pins_owner_to_owned_tenant(db_session, make_user, make_tenant):
    owner = make_user(UserRole.TENANT_OWNER)
    owned = make_tenant(owner)
    other = make_tenant()

    tenant = TenantContextLoader.load(db_session, tenant_id=other.id, principal=owner)

    assert tenant.id == owned.id


def test_loader_keeps_requested_tenant_on_auth_routes(db_session, make_user, make_tenant):
    owner = make_user(UserRole.TENANT_OWNER)
    make_tenant(owner)
    other = make_tenant()

    tenant = TenantContextLoader.load(db_session, tenant_id=other.id, principal=owner, auth_route=True)

    assert tenant.id == other.id


def test_loader_owner_without_tenant_is_rejected(db_session, make_user):
    owner = make_user(UserRole.TENANT_OWNER)

    with pytest.raises(TenantNotFoundForOwner):
        TenantContextLoader.load(db_session, tenant_id=None, principal=owner)


@pytest.mark.parametrize("role", [UserRole.CUSTOMER, UserRole.PLATFORM_ADMIN])
def test_inactive_tenant_is_rejected_for_every_role(db_session, make_user, make_tenant, role):
    tenant = make_tenant(is_active=False)
    principal = make_user(role)

    with pytest.raises(TenantInactive) as exc:
        TenantContextLoader.load(db_session, tenant_id=tenant.id, principal=principal)

    assert exc.value.status_code == 403


def test_expired_subscription_is_invalid_even_when_status_is_active(db_session, make_tenant):
    tenant = make_tenant(subscription_status="active", subscription_end_date=utcnow() - timedelta(days=1))

    with pytest.raises(SubscriptionInvalid) as exc:
        TenantContextLoader.load(db_session, tenant_id=tenant.id)

    assert exc.value.status_code == 403


def test_cancelled_subscription_is_invalid(db_session, make_tenant):
    tenant = make_tenant(subscription_status="cancelled")

    with pytest.raises(SubscriptionInvalid):
        TenantContextLoader.load(db_session, tenant_id=tenant.id)


def test_validate_subscription_accepts_trial_with_future_end_date():
    now = utcnow()
    tenant = SimpleNamespace(subscription_status="trial", subscription_end_date=now + timedelta(days=3))

    check = validate_subscription(tenant, now)

    assert check.valid is True
    assert check.reason is None


def test_validate_subscription_treats_naive_end_date_as_utc():
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    tenant = SimpleNamespace(subscription_status="active", subscription_end_date=datetime(2026, 5, 1, 11, 59))

    assert validate_subscription(tenant, now).valid is False
