from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import PermissionDenied
from app.deps import get_current_user, require_tenant
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.services.authorization_service import AuthorizationService
from app.services.orders import non_negative_money

router = APIRouter(prefix="/api/tenant", tags=["tenant"])

logger = logging.getLogger(__name__)


class TenantProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    delivery_fee: Optional[Any] = None


def public_profile(tenant: Tenant) -> dict:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "slug": tenant.slug,
        "delivery_fee": float(non_negative_money(tenant.delivery_fee)),
    }


@router.get("")
def read_tenant(tenant: Tenant = Depends(require_tenant)):
    return public_profile(tenant)


@router.patch("/profile")
def update_profile(
    payload: TenantProfileUpdate,
    request: Request,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(get_current_user),
):
    if UserRole.parse(user.role) is not UserRole.TENANT_OWNER or tenant.owner_id != user.id:
        AuthorizationService.log_access_denied(
            reason="tenant_profile_denied",
            user=user,
            tenant_id=tenant.id,
            request=request,
        )
        raise PermissionDenied()

    if payload.name is not None:
        tenant.name = payload.name.strip()
    if payload.delivery_fee is not None:
        tenant.delivery_fee = non_negative_money(payload.delivery_fee)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(tenant)
    logger.info("Tenant profile updated tenant_id=%s user_id=%s", tenant.id, user.id)
    return public_profile(tenant)
