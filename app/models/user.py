from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from app.core.database import Base


class UserRole(str, Enum):
    CUSTOMER = "customer"
    TENANT_OWNER = "tenant_owner"
    PLATFORM_ADMIN = "platform_admin"

    @classmethod
    def parse(cls, value: object) -> UserRole | None:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    password_hash = Column(String, nullable=False)

    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)
    # customers only; set once at registration, changed only by a platform admin
    default_tenant_id = Column(Integer, index=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)
