from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, func

from app.core.database import Base


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


ACTIVE_SUBSCRIPTION_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value})
SUBSCRIPTION_STATUS_VALUES = frozenset(status.value for status in SubscriptionStatus)


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True)
    # one tenant per owner; the loader relies on this to pin owners to their restaurant
    owner_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)

    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    subscription_status = Column(String(20), nullable=False, default=SubscriptionStatus.TRIAL.value)
    subscription_plan = Column(String(50), nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)

    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
