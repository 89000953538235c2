from __future__ import annotations

from typing import Iterable

from app.models.order import Order
from app.services.event_bus import event_bus

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status.changed"
ORDER_PAYMENT_CHANGED = "order.payment.changed"


def build_order_payload(order: Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "order_group_id": order.order_group_id,
        "tenant_id": order.tenant_id,
        "customer_id": order.customer_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "total": str(order.total) if order.total is not None else None,
    }


def emit_orders_created(orders: Iterable[Order]) -> None:
    for order in orders:
        event_bus.emit(ORDER_CREATED, build_order_payload(order))


def emit_order_status_changed(order: Order, previous_status: str | None) -> None:
    if previous_status == order.status:
        return
    payload = build_order_payload(order)
    payload["previous_status"] = previous_status
    event_bus.emit(ORDER_STATUS_CHANGED, payload)


def emit_payment_status_changed(order: Order, previous_payment_status: str | None) -> None:
    if previous_payment_status == order.payment_status:
        return
    payload = build_order_payload(order)
    payload["previous_payment_status"] = previous_payment_status
    payload["payment_intent_id"] = order.payment_intent_id
    event_bus.emit(ORDER_PAYMENT_CHANGED, payload)
