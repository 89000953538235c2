from enum import Enum

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from app.core.database import Base


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    ON_DELIVERY = "on_delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(40), unique=True, index=True, nullable=False)

    tenant_id = Column(Integer, ForeignKey("tenants.id"), index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    # orders checked out together share one group id and one payment intent
    order_group_id = Column(String(40), index=True, nullable=True)

    items = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)

    order_type = Column(String(20), nullable=False, default=OrderType.PICKUP.value)
    delivery_street = Column(String, nullable=True)
    delivery_city = Column(String, nullable=True)
    delivery_postal_code = Column(String(20), nullable=True)
    delivery_phone = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_method = Column(String(30), nullable=True)
    payment_intent_id = Column(String(255), index=True, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
