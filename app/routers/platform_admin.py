from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import Conflict, InvalidStatus, PermissionDenied, TenantNotFound, UserNotFound
from app.core.timeutils import utcnow
from app.deps import get_payment_service, require_platform_admin
from app.models.tenant import SUBSCRIPTION_STATUS_VALUES, SubscriptionStatus, Tenant
from app.models.user import User, UserRole
from app.routers.auth import user_to_dict
from app.services.orders import list_orders, non_negative_money, order_to_dict
from app.services.payments import PaymentReconciliationService
from utils.slug import normalize_slug

router = APIRouter(prefix="/api/admin", tags=["platform-admin"])

logger = logging.getLogger(__name__)


class TenantCreate(BaseModel):
    owner_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    subscription_status: str = SubscriptionStatus.TRIAL.value
    subscription_plan: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    delivery_fee: Any = 0


class TenantStatusUpdate(BaseModel):
    is_active: bool


class SubscriptionUpdate(BaseModel):
    subscription_status: str
    subscription_plan: Optional[str] = None
    subscription_end_date: Optional[datetime] = None


class DefaultTenantUpdate(BaseModel):
    default_tenant_id: Optional[int] = Field(None, ge=1)


def tenant_to_dict(tenant: Tenant) -> dict:
    return {
        "id": tenant.id,
        "owner_id": tenant.owner_id,
        "name": tenant.name,
        "slug": tenant.slug,
        "is_active": tenant.is_active,
        "subscription_status": tenant.subscription_status,
        "subscription_plan": tenant.subscription_plan,
        "subscription_start_date": tenant.subscription_start_date.isoformat()
        if tenant.subscription_start_date
        else None,
        "subscription_end_date": tenant.subscription_end_date.isoformat() if tenant.subscription_end_date else None,
        "delivery_fee": float(non_negative_money(tenant.delivery_fee)),
    }


def _normalize_subscription_status(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in SUBSCRIPTION_STATUS_VALUES:
        raise InvalidStatus(
            f"Invalid subscription status '{value}'",
            details={"allowed": sorted(SUBSCRIPTION_STATUS_VALUES)},
        )
    return normalized


def _get_tenant(db: Session, tenant_id: int) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise TenantNotFound(details={"tenant_id": tenant_id})
    return tenant


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


@router.post("/tenants", status_code=201)
def create_tenant(
    payload: TenantCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    owner = db.query(User).filter(User.id == payload.owner_id, User.deleted_at.is_(None)).first()
    if owner is None:
        raise UserNotFound("Owner account not found", details={"owner_id": payload.owner_id})
    if UserRole.parse(owner.role) is UserRole.PLATFORM_ADMIN:
        raise Conflict("A platform admin cannot own a tenant")
    if db.query(Tenant).filter(Tenant.owner_id == owner.id).first() is not None:
        raise Conflict("This account already owns a tenant")

    slug = normalize_slug(payload.slug or payload.name) or None
    if slug and db.query(Tenant).filter(Tenant.slug == slug).first() is not None:
        raise Conflict("Slug already in use", details={"slug": slug})

    tenant = Tenant(
        owner_id=owner.id,
        name=payload.name.strip(),
        slug=slug,
        is_active=True,
        subscription_status=_normalize_subscription_status(payload.subscription_status),
        subscription_plan=payload.subscription_plan,
        subscription_start_date=utcnow(),
        subscription_end_date=payload.subscription_end_date,
        delivery_fee=non_negative_money(payload.delivery_fee),
    )
    if UserRole.parse(owner.role) is UserRole.CUSTOMER:
        owner.role = UserRole.TENANT_OWNER.value
        # owners are pinned through tenants.owner_id, not a default tenant
        owner.default_tenant_id = None
    db.add(tenant)
    _commit(db)
    db.refresh(tenant)

    logger.info("Tenant created tenant_id=%s owner_id=%s admin_id=%s", tenant.id, owner.id, admin.id)
    return tenant_to_dict(tenant)


@router.get("/tenants/{tenant_id}")
def read_tenant(
    tenant_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    return tenant_to_dict(_get_tenant(db, tenant_id))


@router.patch("/tenants/{tenant_id}/status")
def update_tenant_status(
    tenant_id: int,
    payload: TenantStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    tenant = _get_tenant(db, tenant_id)
    tenant.is_active = payload.is_active
    _commit(db)
    db.refresh(tenant)
    logger.info("Tenant status changed tenant_id=%s is_active=%s admin_id=%s", tenant.id, tenant.is_active, admin.id)
    return tenant_to_dict(tenant)


@router.patch("/tenants/{tenant_id}/subscription")
def update_tenant_subscription(
    tenant_id: int,
    payload: SubscriptionUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    tenant = _get_tenant(db, tenant_id)
    tenant.subscription_status = _normalize_subscription_status(payload.subscription_status)
    if payload.subscription_plan is not None:
        tenant.subscription_plan = payload.subscription_plan
    tenant.subscription_end_date = payload.subscription_end_date
    _commit(db)
    db.refresh(tenant)
    logger.info(
        "Tenant subscription changed tenant_id=%s status=%s end_date=%s admin_id=%s",
        tenant.id,
        tenant.subscription_status,
        tenant.subscription_end_date,
        admin.id,
    )
    return tenant_to_dict(tenant)


@router.get("/orders")
def all_orders(
    status: Optional[str] = None,
    tenant_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    result = list_orders(db, tenant_id=tenant_id, status=status, page=page, limit=limit)
    return {"data": [order_to_dict(order) for order in result.items], "meta": result.meta()}


@router.get("/payments")
def all_payments(
    request: Request,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
    admin: User = Depends(require_platform_admin),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    return service.list_payments(
        principal=admin,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
        request=request,
    )


@router.patch("/users/{user_id}/default-tenant")
def update_default_tenant(
    user_id: int,
    payload: DefaultTenantUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    user = db.query(User).filter(User.id == user_id, User.deleted_at.is_(None)).first()
    if user is None:
        raise UserNotFound(details={"user_id": user_id})
    if UserRole.parse(user.role) is not UserRole.CUSTOMER:
        raise PermissionDenied("Only customers are bound to a default tenant")
    if payload.default_tenant_id is not None:
        _get_tenant(db, payload.default_tenant_id)

    previous = user.default_tenant_id
    user.default_tenant_id = payload.default_tenant_id
    _commit(db)
    db.refresh(user)
    logger.info(
        "Customer default tenant changed user_id=%s from=%s to=%s admin_id=%s",
        user.id,
        previous,
        user.default_tenant_id,
        admin.id,
    )
    return user_to_dict(user)
