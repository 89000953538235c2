from __future__ import annotations

import logging
import math
import secrets
import time
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import desc
from sqlalchemy.orm import Session

from app.core.config import ORDER_NUMBER_PREFIX
from app.core.errors import EmptyOrder, OrderNotFound, TenantUnavailable
from app.models.order import Order, OrderStatus, OrderType, PaymentStatus
from app.models.tenant import Tenant
from app.models.user import User
from app.services.order_events import emit_orders_created
from app.services.order_options import NormalizedOptions, normalize_options

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
ORDER_GROUP_PREFIX = "GRP"
_MAX_NUMBER_ATTEMPTS = 10


def to_money(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        amount = Decimal(str(value).strip() or "0")
    except (InvalidOperation, ValueError):
        return ZERO
    if not amount.is_finite():
        return ZERO
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def non_negative_money(value: Any) -> Decimal:
    return max(to_money(value), ZERO)


def coerce_quantity(raw: Any) -> int:
    if isinstance(raw, bool):
        return 1
    try:
        quantity = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return 1
    return quantity if quantity >= 1 else 1


def _first(raw: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return default


@dataclass(frozen=True)
class LineItem:
    item_id: str | None
    name: str
    quantity: int
    unit_price: Decimal
    options: NormalizedOptions = field(default_factory=NormalizedOptions)

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
            "line_total": float(self.line_total),
            "options": self.options.as_dict(),
        }


def normalize_line_item(raw: Any) -> LineItem:
    if not isinstance(raw, dict):
        raw = {}
    item_id = _first(raw, "id", "menu_item_id", "menuItemId")
    return LineItem(
        item_id=str(item_id) if item_id is not None else None,
        name=str(_first(raw, "name", default="") or "").strip() or "Item",
        quantity=coerce_quantity(_first(raw, "quantity", "qty", default=1)),
        unit_price=non_negative_money(_first(raw, "unit_price", "unitPrice", "price", default=0)),
        options=normalize_options(raw.get("options") or raw.get("selected_options")),
    )


@dataclass
class OrderDraft:
    items: list[Any]
    delivery_fee: Any = 0
    tax: Any = 0
    claimed_subtotal: Any = None
    claimed_total: Any = None
    order_type: str = OrderType.PICKUP.value
    delivery_street: str | None = None
    delivery_city: str | None = None
    delivery_postal_code: str | None = None
    delivery_phone: str | None = None
    notes: str | None = None
    payment_method: str | None = None


@dataclass
class OrderBatch:
    order_group_id: str
    orders: list[Order]
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal


def split_evenly(amount: Decimal, parts: int) -> list[Decimal]:
    """Split a money amount into `parts` shares that add back up to the amount exactly."""
    if parts <= 0:
        return []
    share = (amount / parts).quantize(MONEY_QUANT, rounding=ROUND_DOWN)
    shares = [share] * parts
    shares[-1] = amount - share * (parts - 1)
    return shares


def _millis() -> int:
    return int(time.time() * 1000)


def generate_order_group_id() -> str:
    return f"{ORDER_GROUP_PREFIX}{_millis()}-{1000 + secrets.randbelow(9000)}"


def generate_order_number(prefix: str = ORDER_NUMBER_PREFIX) -> str:
    return f"{prefix}{_millis()}-{secrets.randbelow(10000):04d}"


def _allocate_order_numbers(db: Session, count: int) -> list[str]:
    # numbers exist before any row is added, so the not-null unique column is never left empty
    numbers: list[str] = []
    for _ in range(count):
        for _attempt in range(_MAX_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            if candidate in numbers:
                continue
            if db.query(Order.id).filter(Order.order_number == candidate).first() is not None:
                continue
            numbers.append(candidate)
            break
        else:
            raise RuntimeError("Could not allocate a unique order number")
    return numbers


def _resolve_order_type(raw: str | None) -> str:
    normalized = (raw or "").strip().lower()
    if normalized in {OrderType.DELIVERY.value, "livraison"}:
        return OrderType.DELIVERY.value
    return OrderType.PICKUP.value


def _warn_on_claimed_totals(draft: OrderDraft, subtotal: Decimal, total: Decimal) -> None:
    if draft.claimed_subtotal is not None and to_money(draft.claimed_subtotal) != subtotal:
        logger.warning(
            "Client subtotal differs from computed subtotal claimed=%s computed=%s",
            draft.claimed_subtotal,
            subtotal,
        )
    if draft.claimed_total is not None and to_money(draft.claimed_total) != total:
        logger.warning(
            "Client total differs from computed total claimed=%s computed=%s",
            draft.claimed_total,
            total,
        )


def create_orders(db: Session, *, tenant: Tenant | None, customer: User, draft: OrderDraft) -> OrderBatch:
    """Persist one order per line item, all sharing a new order group id.

    Totals come from the normalized line items plus the delivery fee and tax;
    client-claimed subtotal/total are only compared and logged. Fee and tax
    are split evenly across the orders of the group.
    """
    if tenant is None:
        raise TenantUnavailable()
    raw_items = draft.items or []
    if not raw_items:
        raise EmptyOrder()

    line_items = [normalize_line_item(raw) for raw in raw_items]
    delivery_fee = non_negative_money(draft.delivery_fee)
    tax = non_negative_money(draft.tax)
    subtotal = sum((item.line_total for item in line_items), ZERO)
    total = subtotal + delivery_fee + tax
    _warn_on_claimed_totals(draft, subtotal, total)

    fee_shares = split_evenly(delivery_fee, len(line_items))
    tax_shares = split_evenly(tax, len(line_items))
    order_numbers = _allocate_order_numbers(db, len(line_items))
    order_group_id = generate_order_group_id()
    order_type = _resolve_order_type(draft.order_type)

    orders: list[Order] = []
    for item, fee_share, tax_share, order_number in zip(line_items, fee_shares, tax_shares, order_numbers):
        order = Order(
            order_number=order_number,
            tenant_id=tenant.id,
            customer_id=customer.id,
            order_group_id=order_group_id,
            items=[item.as_dict()],
            subtotal=item.line_total,
            delivery_fee=fee_share,
            tax=tax_share,
            total=item.line_total + fee_share + tax_share,
            order_type=order_type,
            delivery_street=draft.delivery_street,
            delivery_city=draft.delivery_city,
            delivery_postal_code=draft.delivery_postal_code,
            delivery_phone=draft.delivery_phone,
            notes=draft.notes,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=draft.payment_method,
        )
        db.add(order)
        orders.append(order)

    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Order creation failed tenant_id=%s customer_id=%s", tenant.id, customer.id)
        raise

    for order in orders:
        db.refresh(order)
    logger.info(
        "Orders created group=%s count=%s tenant_id=%s customer_id=%s total=%s",
        order_group_id,
        len(orders),
        tenant.id,
        customer.id,
        total,
    )
    emit_orders_created(orders)
    return OrderBatch(
        order_group_id=order_group_id,
        orders=orders,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tax=tax,
        total=total,
    )


@dataclass
class Page:
    items: list[Any]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def meta(self) -> dict[str, int]:
        return {"total": self.total, "page": self.page, "limit": self.limit, "pages": self.pages}


def clamp_pagination(page: Any, limit: Any) -> tuple[int, int]:
    try:
        page_number = max(1, int(page))
    except (TypeError, ValueError):
        page_number = 1
    try:
        page_size = int(limit)
    except (TypeError, ValueError):
        page_size = DEFAULT_PAGE_SIZE
    return page_number, min(MAX_PAGE_SIZE, max(1, page_size))


def list_orders(
    db: Session,
    *,
    customer_id: int | None = None,
    tenant_id: int | None = None,
    status: str | None = None,
    page: Any = 1,
    limit: Any = DEFAULT_PAGE_SIZE,
) -> Page:
    page_number, page_size = clamp_pagination(page, limit)
    query = db.query(Order)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if tenant_id is not None:
        query = query.filter(Order.tenant_id == tenant_id)
    if status:
        query = query.filter(Order.status == status.strip().lower())

    total = query.count()
    rows = (
        query.order_by(desc(Order.created_at), desc(Order.id))
        .offset((page_number - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return Page(items=rows, total=total, page=page_number, limit=page_size)


def get_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound()
    return order


def _money_out(value: Any) -> float:
    return float(to_money(value))


def order_to_dict(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "order_group_id": order.order_group_id,
        "tenant_id": order.tenant_id,
        "customer_id": order.customer_id,
        "items": order.items or [],
        "subtotal": _money_out(order.subtotal),
        "delivery_fee": _money_out(order.delivery_fee),
        "tax": _money_out(order.tax),
        "total": _money_out(order.total),
        "order_type": order.order_type,
        "delivery_address": {
            "street": order.delivery_street,
            "city": order.delivery_city,
            "postal_code": order.delivery_postal_code,
            "phone": order.delivery_phone,
        },
        "notes": order.notes,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "payment_intent_id": order.payment_intent_id,
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
