from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.errors import CrossTenantLoginDenied, OrderNotFound, PermissionDenied
from app.models.order import Order
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.services.security_events import SecurityEventKind, SecurityLevel, security_events

logger = logging.getLogger(__name__)


class AuthorizationService:
    """Tenant-scope and role checks shared by the auth, order and payment routes."""

    @staticmethod
    def log_access_denied(
        *,
        reason: str,
        user: User | None,
        tenant_id: int | None,
        request: Request | None,
        kind: SecurityEventKind = SecurityEventKind.ACCESS_DENIED,
        level: SecurityLevel = SecurityLevel.WARNING,
        email: str | None = None,
    ) -> None:
        endpoint = f"{request.method} {request.url.path}" if request is not None else None
        logger.warning(
            "Access denied (%s): user_id=%s user_role=%s tenant_id=%s endpoint=%s",
            reason,
            getattr(user, "id", None),
            getattr(user, "role", None),
            tenant_id,
            endpoint,
        )
        security_events.record(
            kind,
            level=level,
            reason=reason,
            request=request,
            principal_id=getattr(user, "id", None),
            email=email or getattr(user, "email", None),
            tenant_id=tenant_id,
        )

    @staticmethod
    def customer_has_orders_in_tenant(db: Session, *, customer_id: int, tenant_id: int) -> bool:
        return (
            db.query(Order.id)
            .filter(Order.customer_id == customer_id, Order.tenant_id == tenant_id)
            .first()
            is not None
        )

    @classmethod
    def ensure_login_allowed(
        cls,
        db: Session,
        *,
        user: User,
        tenant: Tenant | None,
        request: Request | None = None,
    ) -> None:
        """Reject a login made through another tenant's app.

        Owners may only sign in to the tenant they own. Customers may sign in
        to their default tenant or to any tenant they already ordered from.
        Platform admins may sign in anywhere. Without a tenant context there
        is nothing to check.
        """
        if tenant is None:
            return

        role = UserRole.parse(user.role)
        if role == UserRole.PLATFORM_ADMIN:
            return
        if role == UserRole.TENANT_OWNER:
            allowed = tenant.owner_id == user.id
            reason = "owner_tenant_mismatch"
        elif role == UserRole.CUSTOMER:
            allowed = user.default_tenant_id == tenant.id or cls.customer_has_orders_in_tenant(
                db, customer_id=user.id, tenant_id=tenant.id
            )
            reason = "customer_not_bound_to_tenant"
        else:
            allowed = False
            reason = "unknown_role"

        if allowed:
            return

        # the event is queued before the error response is produced
        cls.log_access_denied(
            reason=reason,
            user=user,
            tenant_id=tenant.id,
            request=request,
            kind=SecurityEventKind.CROSS_TENANT_LOGIN_DENIED,
            level=SecurityLevel.ALERT,
        )
        raise CrossTenantLoginDenied(details={"tenant_id": tenant.id, "reason": reason})

    @classmethod
    def ensure_roles(cls, *, request: Request | None, user: User, roles: Iterable[UserRole]) -> UserRole:
        allowed = set(roles)
        role = UserRole.parse(user.role)
        if role is None or role not in allowed:
            cls.log_access_denied(
                reason="role_denied",
                user=user,
                tenant_id=getattr(getattr(request, "state", None), "tenant_id", None) if request else None,
                request=request,
            )
            raise PermissionDenied()
        return role

    @classmethod
    def ensure_order_access(
        cls,
        *,
        request: Request | None,
        user: User,
        order: Order,
        tenant_id: int | None = None,
    ) -> None:
        """Read access: customers see their own orders, owners their tenant's, admins all."""
        role = UserRole.parse(user.role)
        if role == UserRole.PLATFORM_ADMIN:
            allowed = True
        elif role == UserRole.TENANT_OWNER:
            allowed = tenant_id is not None and order.tenant_id == tenant_id
        elif role == UserRole.CUSTOMER:
            allowed = order.customer_id == user.id and (tenant_id is None or order.tenant_id == tenant_id)
        else:
            allowed = False

        if not allowed:
            cls.log_access_denied(reason="order_scope_mismatch", user=user, tenant_id=tenant_id, request=request)
            # do not reveal that the order exists in another scope
            raise OrderNotFound()

    @classmethod
    def ensure_order_management(
        cls,
        *,
        request: Request | None,
        user: User,
        order: Order,
        tenant: Tenant | None,
    ) -> None:
        """Status changes: the context tenant's owner, or a platform admin."""
        role = UserRole.parse(user.role)
        if tenant is None or order.tenant_id != tenant.id:
            cls.log_access_denied(
                reason="order_outside_tenant",
                user=user,
                tenant_id=getattr(tenant, "id", None),
                request=request,
            )
            raise OrderNotFound()

        if role == UserRole.PLATFORM_ADMIN:
            return
        if role == UserRole.TENANT_OWNER and tenant.owner_id == user.id:
            return
        cls.log_access_denied(reason="order_management_denied", user=user, tenant_id=tenant.id, request=request)
        raise PermissionDenied()

    @staticmethod
    def default_tenant_for_registration(*, role_override: str | None, tenant: Tenant | None) -> int | None:
        if role_override or tenant is None:
            return None
        return tenant.id
