"""Order status state machine.

    pending --confirm--> confirmed --start_prep--> preparing --mark_ready--> ready
    ready --dispatch--> on_delivery --complete--> completed

``cancel`` is accepted from every non-terminal status. ``completed`` and
``cancelled`` are terminal.
"""

from __future__ import annotations

import logging
from enum import Enum

from app.core.errors import InvalidStatus, InvalidStatusTransition
from app.core.timeutils import utcnow
from app.models.order import Order, OrderStatus
from app.services.order_events import emit_order_status_changed

logger = logging.getLogger(__name__)


class OrderEvent(str, Enum):
    CONFIRM = "confirm"
    START_PREP = "start_prep"
    MARK_READY = "mark_ready"
    DISPATCH = "dispatch"
    COMPLETE = "complete"
    CANCEL = "cancel"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value})
ALLOWED_STATUSES = frozenset(status.value for status in OrderStatus)

# older client apps still send these names
STATUS_ALIASES = {
    "out_for_delivery": OrderStatus.ON_DELIVERY.value,
    "delivered": OrderStatus.COMPLETED.value,
}

TRANSITIONS: dict[tuple[str, OrderEvent], str] = {
    (OrderStatus.PENDING.value, OrderEvent.CONFIRM): OrderStatus.CONFIRMED.value,
    (OrderStatus.CONFIRMED.value, OrderEvent.START_PREP): OrderStatus.PREPARING.value,
    (OrderStatus.PREPARING.value, OrderEvent.MARK_READY): OrderStatus.READY.value,
    (OrderStatus.READY.value, OrderEvent.DISPATCH): OrderStatus.ON_DELIVERY.value,
    (OrderStatus.ON_DELIVERY.value, OrderEvent.COMPLETE): OrderStatus.COMPLETED.value,
}


def is_terminal(status: str | None) -> bool:
    return (status or "") in TERMINAL_STATUSES


def normalize_status(value: str | None) -> str:
    normalized = (value or "").strip().lower()
    normalized = STATUS_ALIASES.get(normalized, normalized)
    if normalized not in ALLOWED_STATUSES:
        raise InvalidStatus(
            f"Invalid status '{value}'",
            details={"allowed": sorted(ALLOWED_STATUSES)},
        )
    return normalized


def next_status(current: str, event: OrderEvent) -> str:
    if is_terminal(current):
        raise InvalidStatusTransition(details={"from": current, "event": event.value})
    if event is OrderEvent.CANCEL:
        return OrderStatus.CANCELLED.value
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidStatusTransition(
            f"Cannot {event.value} an order that is {current}",
            details={"from": current, "event": event.value},
        )
    return target


def _apply(order: Order, target: str) -> str:
    previous = order.status
    order.status = target
    if target == OrderStatus.COMPLETED.value and order.completed_at is None:
        order.completed_at = utcnow()
    logger.info("Order status changed order_id=%s from=%s to=%s", order.id, previous, target)
    return previous


def apply_event(order: Order, event: OrderEvent | str) -> str:
    """Move the order along the state machine; the caller commits. Returns the previous status."""
    try:
        event = OrderEvent(str(event.value if isinstance(event, OrderEvent) else event).strip().lower())
    except ValueError as exc:
        raise InvalidStatusTransition(f"Unknown order event '{event}'") from exc
    return _apply(order, next_status(order.status, event))


def update_status(order: Order, target: str) -> str | None:
    """Set an allow-listed status directly.

    The target is validated before anything else so a rejected request never
    touches the stored status. Returns the previous status, or None when the
    order already had the target status.
    """
    normalized = normalize_status(target)
    if normalized == order.status:
        return None
    if is_terminal(order.status):
        raise InvalidStatusTransition(
            f"Order is already {order.status}",
            details={"from": order.status, "to": normalized},
        )
    return _apply(order, normalized)


def commit_status_change(db, order: Order, previous_status: str | None) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    if previous_status is not None:
        emit_order_status_changed(order, previous_status)
