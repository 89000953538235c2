from __future__ import annotations

import logging

from app.services.event_bus import event_bus
from app.services.order_events import ORDER_CREATED, ORDER_PAYMENT_CHANGED, ORDER_STATUS_CHANGED

logger = logging.getLogger(__name__)


def log_order_created(payload: dict) -> None:
    logger.info(
        "order created order_id=%s order_number=%s group=%s tenant_id=%s total=%s",
        payload.get("order_id"),
        payload.get("order_number"),
        payload.get("order_group_id"),
        payload.get("tenant_id"),
        payload.get("total"),
    )


def log_order_status_changed(payload: dict) -> None:
    logger.info(
        "order status changed order_id=%s tenant_id=%s %s -> %s",
        payload.get("order_id"),
        payload.get("tenant_id"),
        payload.get("previous_status"),
        payload.get("status"),
    )


def log_order_payment_changed(payload: dict) -> None:
    logger.info(
        "order payment changed order_id=%s tenant_id=%s intent=%s %s -> %s",
        payload.get("order_id"),
        payload.get("tenant_id"),
        payload.get("payment_intent_id"),
        payload.get("previous_payment_status"),
        payload.get("payment_status"),
    )


_registered = False


def register_event_handlers() -> None:
    global _registered
    if _registered:
        return
    event_bus.subscribe(ORDER_CREATED, log_order_created)
    event_bus.subscribe(ORDER_STATUS_CHANGED, log_order_status_changed)
    event_bus.subscribe(ORDER_PAYMENT_CHANGED, log_order_payment_changed)
    _registered = True
