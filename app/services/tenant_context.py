from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.errors import (
    SubscriptionInvalid,
    TenantAccessDenied,
    TenantIdRequired,
    TenantInactive,
    TenantNotFound,
    TenantNotFoundForOwner,
)
from app.core.timeutils import as_utc, utcnow
from app.models.tenant import ACTIVE_SUBSCRIPTION_STATUSES, Tenant
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionCheck:
    valid: bool
    reason: str | None = None


def validate_subscription(tenant: Tenant, now: datetime | None = None) -> SubscriptionCheck:
    now = as_utc(now) or utcnow()
    status = (tenant.subscription_status or "").strip().lower()
    if status not in ACTIVE_SUBSCRIPTION_STATUSES:
        return SubscriptionCheck(valid=False, reason=f"subscription status is '{status or 'unset'}'")

    # an elapsed end date invalidates the subscription whatever its status says
    end_date = as_utc(tenant.subscription_end_date)
    if end_date is not None and end_date < now:
        return SubscriptionCheck(valid=False, reason=f"subscription ended at {end_date.isoformat()}")

    return SubscriptionCheck(valid=True)


class TenantContextLoader:
    """Turn a resolved tenant id into a validated ``Tenant``.

    On authentication routes the resolved id is used verbatim: it names the
    app the user is signing in to, and the cross-tenant decision belongs to
    the login handler. Everywhere else a tenant owner is pinned to the
    tenant it owns, whatever id the request carried.
    """

    @staticmethod
    def _owned_tenant(db: Session, owner: User) -> Tenant | None:
        return db.query(Tenant).filter(Tenant.owner_id == owner.id).first()

    @classmethod
    def load(
        cls,
        db: Session,
        *,
        tenant_id: int | None,
        principal: User | None = None,
        auth_route: bool = False,
        required: bool = False,
        now: datetime | None = None,
    ) -> Tenant | None:
        role = UserRole.parse(principal.role) if principal is not None else None
        owner_scoped = role is UserRole.TENANT_OWNER and not auth_route

        if owner_scoped:
            owned = cls._owned_tenant(db, principal)
            if owned is None:
                logger.warning("Tenant owner without tenant user_id=%s requested_tenant=%s", principal.id, tenant_id)
                raise TenantNotFoundForOwner(details={"user_id": principal.id})
            if tenant_id is not None and tenant_id != owned.id:
                logger.info(
                    "Tenant id overridden for owner user_id=%s requested_tenant=%s owned_tenant=%s",
                    principal.id,
                    tenant_id,
                    owned.id,
                )
            tenant_id = owned.id

        if tenant_id is None:
            if required:
                raise TenantIdRequired(
                    details="Send the X-Tenant-Id header, the tenant_id query parameter or configure DEFAULT_TENANT_ID"
                )
            return None

        tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None:
            raise TenantNotFound(details={"tenant_id": tenant_id})

        if owner_scoped and tenant.owner_id != principal.id:
            logger.warning(
                "Tenant owner mismatch user_id=%s tenant_id=%s owner_id=%s",
                principal.id,
                tenant.id,
                tenant.owner_id,
            )
            raise TenantAccessDenied(details={"tenant_id": tenant.id})

        if not tenant.is_active:
            raise TenantInactive(details={"tenant_id": tenant.id})

        subscription = validate_subscription(tenant, now)
        if not subscription.valid:
            raise SubscriptionInvalid(details={"tenant_id": tenant.id, "reason": subscription.reason})

        return tenant
