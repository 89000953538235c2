"""Payment intents and the order payment state they drive.

The provider owns the intent lifecycle; this service owns the mapping from
intent id to local orders. Every provider call happens before any local
write, so a failed or timed-out provider call leaves the database untouched.
Group updates are committed as one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import Request
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.config import PAYMENT_DEFAULT_CURRENCY
from app.core.errors import (
    Conflict,
    InvalidAmount,
    OrderNotFound,
    PaymentFailed,
    PaymentNotAuthorized,
    PaymentProviderUnavailable,
)
from app.models.order import Order, PaymentStatus
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.payments.base import PaymentProvider, ProviderIntent, metadata_str, to_minor_units
from app.services.authorization_service import AuthorizationService
from app.services.order_events import emit_payment_status_changed
from app.services.orders import ZERO, Page, clamp_pagination, to_money

logger = logging.getLogger(__name__)

CARD_PAYMENT_METHOD = "stripe_card"
MOBILE_WALLET_METHODS = {
    "apple_pay": "stripe_apple_pay",
    "google_pay": "stripe_google_pay",
}
DEFAULT_MOBILE_WALLET = "apple_pay"

INTENT_SUCCEEDED = "succeeded"
INTENT_REQUIRES_PAYMENT_METHOD = "requires_payment_method"
INTENT_CANCELED = "canceled"
PENDING_INTENT_STATUSES = frozenset({"processing", "requires_action", "requires_confirmation", "requires_capture"})
UNSUCCESSFUL_REFUND_STATUSES = frozenset({"failed", "canceled"})

SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value})
PROVIDER_LIST_PAGE = 100


@dataclass
class IntentResult:
    intent_id: str
    client_secret: str | None
    amount: Decimal
    amount_minor: int
    currency: str
    payment_method: str
    order_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "payment_intent_id": self.intent_id,
            "client_secret": self.client_secret,
            "amount": float(self.amount),
            "amount_minor": self.amount_minor,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "order_ids": self.order_ids,
        }


@dataclass
class ConfirmationResult:
    intent_id: str
    provider_status: str
    payment_status: str
    order_ids: list[int] = field(default_factory=list)
    updated_order_ids: list[int] = field(default_factory=list)

    @property
    def pending(self) -> bool:
        return self.payment_status == PaymentStatus.PENDING.value

    def as_dict(self) -> dict[str, Any]:
        message = "Payment is still being processed" if self.pending else "Payment confirmed"
        return {
            "success": True,
            "message": message,
            "payment_intent_id": self.intent_id,
            "provider_status": self.provider_status,
            "payment_status": self.payment_status,
            "order_ids": self.order_ids,
            "updated_order_ids": self.updated_order_ids,
        }


def resolve_mobile_wallet(tag: str | None) -> str:
    normalized = (tag or "").strip().lower()
    if normalized not in MOBILE_WALLET_METHODS:
        # unknown wallets fall back to the first supported one; the stored tag records the choice
        logger.info("Unknown mobile wallet %r, falling back to %s", tag, DEFAULT_MOBILE_WALLET)
        return DEFAULT_MOBILE_WALLET
    return normalized


class PaymentReconciliationService:
    def __init__(self, db: Session, provider: PaymentProvider | None) -> None:
        self.db = db
        self.provider = provider

    def _require_provider(self) -> PaymentProvider:
        if self.provider is None:
            raise PaymentProviderUnavailable()
        return self.provider

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Payment state commit failed")
            raise

    def _orders_for_checkout(
        self,
        *,
        customer_id: int,
        tenant_id: int | None,
        order_id: int | None,
        order_group_id: str | None,
    ) -> list[Order]:
        if order_group_id:
            query = self.db.query(Order).filter(Order.order_group_id == order_group_id)
        elif order_id is not None:
            query = self.db.query(Order).filter(Order.id == order_id)
        else:
            raise OrderNotFound("An order id or an order group id is required")

        query = query.filter(Order.customer_id == customer_id)
        if tenant_id is not None:
            query = query.filter(Order.tenant_id == tenant_id)
        orders = query.order_by(Order.id).all()
        if not orders:
            raise OrderNotFound()
        return orders

    def _orders_for_intent(self, intent: ProviderIntent, *, customer_id: int | None = None) -> list[Order]:
        # metadata only reaches orders not yet bound to some intent
        unbound = []
        group_id = intent.metadata.get("order_group_id")
        if group_id:
            unbound.append(Order.order_group_id == group_id)
        order_id = intent.metadata.get("order_id")
        if order_id and order_id.isdigit():
            unbound.append(Order.id == int(order_id))

        conditions = [Order.payment_intent_id == intent.id]
        if unbound:
            conditions.append(and_(Order.payment_intent_id.is_(None), or_(*unbound)))

        query = self.db.query(Order).filter(or_(*conditions))
        if customer_id is not None:
            query = query.filter(Order.customer_id == customer_id)
        return query.order_by(Order.id).all()

    def create_intent(
        self,
        *,
        principal: User,
        tenant: Tenant | None,
        amount: Any,
        currency: str | None = None,
        order_id: int | None = None,
        order_group_id: str | None = None,
        payment_method: str = CARD_PAYMENT_METHOD,
        payment_method_types: list[str] | None = None,
    ) -> IntentResult:
        amount_value = to_money(amount)
        if amount_value <= ZERO:
            raise InvalidAmount(details={"amount": str(amount)})
        provider = self._require_provider()

        tenant_id = tenant.id if tenant is not None else None
        orders = self._orders_for_checkout(
            customer_id=principal.id,
            tenant_id=tenant_id,
            order_id=order_id,
            order_group_id=order_group_id,
        )
        payable = [order for order in orders if order.payment_status not in SETTLED_PAYMENT_STATUSES]
        if not payable:
            raise Conflict("These orders are already paid")

        expected = sum((to_money(order.total) for order in payable), ZERO)
        if expected != amount_value:
            logger.warning(
                "Payment amount differs from order totals amount=%s expected=%s group=%s order_id=%s",
                amount_value,
                expected,
                order_group_id,
                order_id,
            )

        currency_code = (currency or PAYMENT_DEFAULT_CURRENCY).strip().lower()
        amount_minor = to_minor_units(amount_value)
        intent = provider.create_intent(
            amount_minor=amount_minor,
            currency=currency_code,
            metadata=metadata_str(
                {
                    "customer_id": principal.id,
                    "tenant_id": tenant_id,
                    "order_id": order_id if not order_group_id else None,
                    "order_group_id": order_group_id,
                }
            ),
            description=f"Order {order_group_id or payable[0].order_number}",
            payment_method_types=payment_method_types,
        )

        for order in payable:
            order.payment_intent_id = intent.id
            order.payment_method = payment_method
        self._commit()

        logger.info(
            "Payment intent created intent=%s orders=%s amount_minor=%s method=%s",
            intent.id,
            [order.id for order in payable],
            amount_minor,
            payment_method,
        )
        return IntentResult(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=amount_value,
            amount_minor=amount_minor,
            currency=currency_code,
            payment_method=payment_method,
            order_ids=[order.id for order in payable],
        )

    def create_mobile_pay_intent(
        self,
        *,
        principal: User,
        tenant: Tenant | None,
        amount: Any,
        wallet: str | None = None,
        currency: str | None = None,
        order_id: int | None = None,
        order_group_id: str | None = None,
    ) -> IntentResult:
        wallet_tag = resolve_mobile_wallet(wallet)
        return self.create_intent(
            principal=principal,
            tenant=tenant,
            amount=amount,
            currency=currency,
            order_id=order_id,
            order_group_id=order_group_id,
            payment_method=MOBILE_WALLET_METHODS[wallet_tag],
            payment_method_types=["card"],
        )

    def confirm_payment(self, *, principal: User, intent_id: str) -> ConfirmationResult:
        provider = self._require_provider()
        intent = provider.retrieve_intent(intent_id)

        if intent.metadata.get("customer_id") != str(principal.id):
            AuthorizationService.log_access_denied(
                reason="payment_customer_mismatch",
                user=principal,
                tenant_id=None,
                request=None,
            )
            raise PaymentNotAuthorized()

        status = (intent.status or "").strip().lower()
        orders = self._orders_for_intent(intent, customer_id=principal.id)
        order_ids = [order.id for order in orders]

        if status == INTENT_SUCCEEDED:
            updated = self._settle(orders, intent_id=intent.id, target=PaymentStatus.PAID.value)
            return ConfirmationResult(
                intent_id=intent.id,
                provider_status=status,
                payment_status=PaymentStatus.PAID.value,
                order_ids=order_ids,
                updated_order_ids=updated,
            )

        if status in PENDING_INTENT_STATUSES:
            return ConfirmationResult(
                intent_id=intent.id,
                provider_status=status,
                payment_status=PaymentStatus.PENDING.value,
                order_ids=order_ids,
            )

        if status == INTENT_REQUIRES_PAYMENT_METHOD:
            raise PaymentFailed(
                "Payment failed, please try another payment method",
                details={"provider_status": status},
            )
        if status == INTENT_CANCELED:
            self._settle(orders, intent_id=intent.id, target=PaymentStatus.FAILED.value)
            raise PaymentFailed("Payment was canceled", details={"provider_status": status})
        raise PaymentFailed(f"Payment not completed (status: {status or 'unknown'})", details={"provider_status": status})

    def _settle(self, orders: list[Order], *, intent_id: str, target: str) -> list[int]:
        # settled rows are left alone, so replays change nothing
        changes: list[tuple[Order, str]] = []
        for order in orders:
            if order.payment_status in SETTLED_PAYMENT_STATUSES or order.payment_status == target:
                continue
            changes.append((order, order.payment_status))
            order.payment_status = target
            if not order.payment_intent_id:
                order.payment_intent_id = intent_id

        if not changes:
            return []

        self._commit()
        for order, previous in changes:
            emit_payment_status_changed(order, previous)
        logger.info(
            "Payment status applied intent=%s status=%s orders=%s",
            intent_id,
            target,
            [order.id for order, _ in changes],
        )
        return [order.id for order, _ in changes]

    def refund_payment(
        self,
        *,
        principal: User,
        intent_id: str,
        order_id: int | None = None,
        amount: Any = None,
        request: Request | None = None,
    ) -> dict[str, Any]:
        # role first: a non-admin never reaches the provider
        AuthorizationService.ensure_roles(request=request, user=principal, roles=[UserRole.PLATFORM_ADMIN])

        amount_minor = None
        if amount is not None:
            amount_value = to_money(amount)
            if amount_value <= ZERO:
                raise InvalidAmount(details={"amount": str(amount)})
            amount_minor = to_minor_units(amount_value)

        provider = self._require_provider()

        if order_id is not None:
            order = self.db.query(Order).filter(Order.id == order_id).first()
            if order is None or (order.payment_intent_id and order.payment_intent_id != intent_id):
                raise OrderNotFound()
            targets = [order]
        else:
            targets = self.db.query(Order).filter(Order.payment_intent_id == intent_id).order_by(Order.id).all()
            bound_minor = to_minor_units(sum((to_money(order.total) for order in targets), ZERO))
            if amount_minor is not None and amount_minor < bound_minor:
                # partial refund without an order: payment statuses are left unchanged
                targets = []

        refund = provider.refund(intent_id=intent_id, amount_minor=amount_minor)
        refund_status = (refund.status or "").strip().lower()
        if refund_status in UNSUCCESSFUL_REFUND_STATUSES:
            logger.warning("Refund not completed intent=%s refund=%s status=%s", intent_id, refund.id, refund_status)
            raise PaymentFailed(
                f"Refund not completed (status: {refund_status})",
                details={"provider_status": refund_status, "refund_id": refund.id},
            )

        changes: list[tuple[Order, str]] = []
        for order in targets:
            if order.payment_status == PaymentStatus.REFUNDED.value:
                continue
            changes.append((order, order.payment_status))
            # order status is left as is; a refund does not cancel the order
            order.payment_status = PaymentStatus.REFUNDED.value
        if changes:
            self._commit()
            for order, previous in changes:
                emit_payment_status_changed(order, previous)

        logger.info(
            "Refund processed intent=%s refund=%s amount_minor=%s orders=%s admin_id=%s",
            intent_id,
            refund.id,
            refund.amount,
            [order.id for order in targets],
            principal.id,
        )
        return {
            "success": True,
            "refund_id": refund.id,
            "status": refund.status,
            "amount": refund.amount / 100,
            "amount_minor": refund.amount,
            "order_ids": [order.id for order in targets],
        }

    def list_payments(
        self,
        *,
        principal: User,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: Any = 1,
        limit: Any = 20,
        request: Request | None = None,
    ) -> dict[str, Any]:
        AuthorizationService.ensure_roles(request=request, user=principal, roles=[UserRole.PLATFORM_ADMIN])
        provider = self._require_provider()

        intents = provider.list_intents(limit=PROVIDER_LIST_PAGE, created_gte=start_date, created_lte=end_date)
        if status:
            wanted = status.strip().lower()
            intents = [intent for intent in intents if intent.status == wanted]

        page_number, page_size = clamp_pagination(page, limit)
        total = len(intents)
        start = (page_number - 1) * page_size
        window = intents[start : start + page_size]

        orders_by_intent: dict[str, list[Order]] = {}
        if window:
            rows = self.db.query(Order).filter(Order.payment_intent_id.in_([intent.id for intent in window])).all()
            for order in rows:
                orders_by_intent.setdefault(order.payment_intent_id, []).append(order)

        customer_ids = {order.customer_id for rows in orders_by_intent.values() for order in rows}
        customers = {}
        if customer_ids:
            customers = {user.id: user for user in self.db.query(User).filter(User.id.in_(customer_ids)).all()}

        data = []
        for intent in window:
            linked = orders_by_intent.get(intent.id, [])
            data.append(
                {
                    "id": intent.id,
                    "amount": intent.amount / 100,
                    "currency": intent.currency,
                    "status": intent.status,
                    "created": intent.created.isoformat() if intent.created else None,
                    "metadata": intent.metadata,
                    "orders": [
                        {
                            "id": order.id,
                            "order_number": order.order_number,
                            "tenant_id": order.tenant_id,
                            "status": order.status,
                            "payment_status": order.payment_status,
                            "total": float(to_money(order.total)),
                            "customer": _customer_summary(customers.get(order.customer_id)),
                        }
                        for order in linked
                    ],
                }
            )

        page_info = Page(items=data, total=total, page=page_number, limit=page_size)
        return {"data": page_info.items, "meta": page_info.meta()}


def _customer_summary(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}
