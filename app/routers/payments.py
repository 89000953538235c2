from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from app.deps import get_current_user, get_payment_service, optional_tenant, rate_limit, require_tenant
from app.models.tenant import Tenant
from app.models.user import User
from app.services.payments import PaymentReconciliationService

router = APIRouter(prefix="/api/payments", tags=["payments"])


class IntentCreate(BaseModel):
    # amount is validated by the service so a bad value maps to InvalidAmount
    amount: Any = None
    currency: Optional[str] = None
    order_id: Optional[int] = None
    order_group_id: Optional[str] = None
    payment_method_types: Optional[List[str]] = None


class MobileIntentCreate(BaseModel):
    amount: Any = None
    currency: Optional[str] = None
    order_id: Optional[int] = None
    order_group_id: Optional[str] = None
    payment_method: Optional[str] = Field(None, description="apple_pay or google_pay")


class PaymentConfirm(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)


class RefundCreate(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    order_id: Optional[int] = None
    amount: Any = None


@router.post("/create-intent", dependencies=[Depends(rate_limit("payment"))])
def create_payment_intent(
    payload: IntentCreate,
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(get_current_user),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    result = service.create_intent(
        principal=user,
        tenant=tenant,
        amount=payload.amount,
        currency=payload.currency,
        order_id=payload.order_id,
        order_group_id=payload.order_group_id,
        payment_method_types=payload.payment_method_types,
    )
    return {"success": True, **result.as_dict()}


@router.post("/create-mobile-pay-intent", dependencies=[Depends(rate_limit("payment"))])
def create_mobile_pay_intent(
    payload: MobileIntentCreate,
    tenant: Tenant = Depends(require_tenant),
    user: User = Depends(get_current_user),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    result = service.create_mobile_pay_intent(
        principal=user,
        tenant=tenant,
        amount=payload.amount,
        wallet=payload.payment_method,
        currency=payload.currency,
        order_id=payload.order_id,
        order_group_id=payload.order_group_id,
    )
    return {"success": True, **result.as_dict()}


@router.post("/confirm", dependencies=[Depends(rate_limit("payment"))])
def confirm_payment(
    payload: PaymentConfirm,
    tenant: Optional[Tenant] = Depends(optional_tenant),
    user: User = Depends(get_current_user),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    result = service.confirm_payment(principal=user, intent_id=payload.payment_intent_id)
    return result.as_dict()


@router.post("/refund")
def refund_payment(
    payload: RefundCreate,
    request: Request,
    tenant: Optional[Tenant] = Depends(optional_tenant),
    user: User = Depends(get_current_user),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    return service.refund_payment(
        principal=user,
        intent_id=payload.payment_intent_id,
        order_id=payload.order_id,
        amount=payload.amount,
        request=request,
    )
