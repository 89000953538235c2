from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, func

from app.core.database import Base


class LoginAttempt(Base):
    __tablename__ = "login_attempts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_login_attempts_tenant_email"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # 0 when the login happened without a tenant context
    tenant_id = Column(Integer, nullable=False, index=True, default=0)
    email = Column(String, nullable=False, index=True)
    failed_count = Column(Integer, nullable=False, default=0)
    first_failed_at = Column(DateTime(timezone=True), nullable=True)
    last_failed_at = Column(DateTime(timezone=True), nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
