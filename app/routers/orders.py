from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps import get_current_user, optional_tenant, require_roles, require_tenant
from app.models.order import OrderType
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.services.authorization_service import AuthorizationService
from app.services.order_lifecycle import apply_event, commit_status_change, update_status
from app.services.orders import (
    OrderDraft,
    create_orders,
    get_order,
    list_orders,
    order_to_dict,
)

router = APIRouter(prefix="/api/orders", tags=["orders"])

logger = logging.getLogger(__name__)

require_customer = require_roles(UserRole.CUSTOMER)
require_manager = require_roles(UserRole.TENANT_OWNER, UserRole.PLATFORM_ADMIN)


class DeliveryAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None


class OrderCreatePayload(BaseModel):
    items: List[Any] = Field(default_factory=list)
    subtotal: Optional[Any] = None
    delivery_fee: Optional[Any] = None
    tax: Optional[Any] = None
    total: Optional[Any] = None
    order_type: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None


class StatusPayload(BaseModel):
    status: str


class TransitionPayload(BaseModel):
    event: str


def _draft_from_payload(payload: OrderCreatePayload, tenant: Tenant) -> OrderDraft:
    address = payload.delivery_address or DeliveryAddress()
    order_type = payload.order_type or OrderType.PICKUP.value
    delivery_fee = payload.delivery_fee
    if delivery_fee is None and order_type.strip().lower() == OrderType.DELIVERY.value:
        delivery_fee = tenant.delivery_fee
    return OrderDraft(
        items=payload.items,
        delivery_fee=delivery_fee or 0,
        tax=payload.tax or 0,
        claimed_subtotal=payload.subtotal,
        claimed_total=payload.total,
        order_type=order_type,
        delivery_street=address.street,
        delivery_city=address.city,
        delivery_postal_code=address.postal_code,
        delivery_phone=address.phone,
        notes=payload.notes,
        payment_method=payload.payment_method,
    )


@router.post("", status_code=201)
def create_order(
    payload: OrderCreatePayload,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(require_customer),
):
    batch = create_orders(db, tenant=tenant, customer=user, draft=_draft_from_payload(payload, tenant))
    return {
        "success": True,
        "order_group_id": batch.order_group_id,
        "orders": [
            {
                "id": order.id,
                "order_number": order.order_number,
                "item_name": (order.items or [{}])[0].get("name"),
                "total": float(order.total),
            }
            for order in batch.orders
        ],
        "total_orders": len(batch.orders),
        "subtotal": float(batch.subtotal),
        "delivery_fee": float(batch.delivery_fee),
        "tax": float(batch.tax),
        "total": float(batch.total),
    }


@router.get("/my-orders")
def my_orders(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Optional[Tenant] = Depends(optional_tenant),
):
    result = list_orders(
        db,
        customer_id=user.id,
        tenant_id=tenant.id if tenant is not None else None,
        status=status,
        page=page,
        limit=limit,
    )
    return {"data": [order_to_dict(order) for order in result.items], "meta": result.meta()}


@router.get("/tenant")
def tenant_orders(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(require_manager),
):
    result = list_orders(db, tenant_id=tenant.id, status=status, page=page, limit=limit)
    return {"data": [order_to_dict(order) for order in result.items], "meta": result.meta()}


@router.get("/{order_id}")
def read_order(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Optional[Tenant] = Depends(optional_tenant),
):
    order = get_order(db, order_id)
    AuthorizationService.ensure_order_access(
        request=request,
        user=user,
        order=order,
        tenant_id=tenant.id if tenant is not None else None,
    )
    return order_to_dict(order)


@router.patch("/{order_id}/status")
def change_order_status(
    order_id: int,
    payload: StatusPayload,
    request: Request,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(get_current_user),
):
    order = get_order(db, order_id)
    AuthorizationService.ensure_order_management(request=request, user=user, order=order, tenant=tenant)
    previous = update_status(order, payload.status)
    commit_status_change(db, order, previous)
    return {"success": True, "order": order_to_dict(order)}


@router.post("/{order_id}/transitions")
def transition_order(
    order_id: int,
    payload: TransitionPayload,
    request: Request,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(get_current_user),
):
    order = get_order(db, order_id)
    AuthorizationService.ensure_order_management(request=request, user=user, order=order, tenant=tenant)
    previous = apply_event(order, payload.event)
    commit_status_change(db, order, previous)
    return {"success": True, "order": order_to_dict(order)}
