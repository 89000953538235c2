from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.core.timeutils import as_utc, utcnow
from app.models.login_attempt import LoginAttempt

MAX_FAILED_ATTEMPTS = 8
ATTEMPT_WINDOW = timedelta(minutes=10)
LOCK_DURATION = timedelta(minutes=10)
NO_TENANT_KEY = 0


@dataclass(frozen=True)
class LockState:
    locked: bool
    locked_until: datetime | None = None
    failed_count: int = 0


def _tenant_key(tenant_id: int | None) -> int:
    return tenant_id if tenant_id is not None else NO_TENANT_KEY


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _find(db: Session, tenant_id: int | None, email: str) -> LoginAttempt | None:
    return (
        db.query(LoginAttempt)
        .filter(
            LoginAttempt.tenant_id == _tenant_key(tenant_id),
            LoginAttempt.email == _normalize_email(email),
        )
        .first()
    )


def lock_state(db: Session, tenant_id: int | None, email: str, now: datetime | None = None) -> LockState:
    now = now or utcnow()
    attempt = _find(db, tenant_id, email)
    if attempt is None:
        return LockState(locked=False)
    locked_until = as_utc(attempt.locked_until)
    if locked_until is not None and locked_until > now:
        return LockState(locked=True, locked_until=locked_until, failed_count=attempt.failed_count)
    return LockState(locked=False, failed_count=attempt.failed_count)


def register_failed_login(db: Session, tenant_id: int | None, email: str, now: datetime | None = None) -> LockState:
    """Count a failed login; the caller commits. Locks once the window holds too many failures."""
    now = now or utcnow()
    attempt = _find(db, tenant_id, email)
    if attempt is None:
        attempt = LoginAttempt(
            tenant_id=_tenant_key(tenant_id),
            email=_normalize_email(email),
            failed_count=0,
            first_failed_at=now,
        )
        db.add(attempt)

    first_failed_at = as_utc(attempt.first_failed_at)
    if first_failed_at is None or now - first_failed_at > ATTEMPT_WINDOW:
        attempt.failed_count = 0
        attempt.first_failed_at = now
    attempt.failed_count = (attempt.failed_count or 0) + 1
    attempt.last_failed_at = now

    if attempt.failed_count >= MAX_FAILED_ATTEMPTS:
        attempt.locked_until = now + LOCK_DURATION
        return LockState(locked=True, locked_until=attempt.locked_until, failed_count=attempt.failed_count)
    return LockState(locked=False, failed_count=attempt.failed_count)


def clear_login_attempts(db: Session, tenant_id: int | None, email: str) -> None:
    attempt = _find(db, tenant_id, email)
    if attempt is not None:
        db.delete(attempt)
