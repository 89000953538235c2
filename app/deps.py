# app/deps.py
from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import RATE_LIMIT_ENABLED
from app.core.database import get_db
from app.core.errors import NotAuthenticated, RateLimited
from app.core.rate_limiter import rate_limiter
from app.core.request_context import client_ip_from_request, set_request_context
from app.core.tenant_settings import TenantSettings
from app.core.tenant_settings import get_tenant_settings as _load_tenant_settings
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.payments.base import PaymentProvider
from app.payments.registry import get_payment_provider as _build_payment_provider
from app.services.auth import decode_access_token, extract_user_id
from app.services.authorization_service import AuthorizationService
from app.services.payments import PaymentReconciliationService
from app.services.security_events import SecurityEventKind, SecurityLevel, security_events
from app.services.tenant_context import TenantContextLoader
from app.services.tenant_resolver import TenantResolver

# Swagger "Authorize" posts the form to this endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

logger = logging.getLogger(__name__)


def get_tenant_settings() -> TenantSettings:
    return _load_tenant_settings()


def get_payment_provider() -> PaymentProvider | None:
    return _build_payment_provider()


def _user_from_token(db: Session, token: str | None) -> User | None:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except ValueError:
        return None

    user_id = extract_user_id(payload)
    if user_id is None:
        return None

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or user.deleted_at is not None or not user.is_active:
        return None
    return user


def get_optional_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User | None:
    """The authenticated principal, or None for anonymous callers and bad tokens."""
    cached = getattr(request.state, "user", None)
    if cached is not None:
        return cached
    user = _user_from_token(db, token)
    if user is not None:
        request.state.user = user
        set_request_context(user_id=str(user.id))
    return user


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise NotAuthenticated()
    return user


class TenantContextDependency:
    """Resolve, load and attach the tenant a request targets.

    ``required`` makes a missing tenant id an error. ``auth_route`` keeps the
    resolved id as sent, which login and registration need.
    """

    def __init__(self, *, required: bool, auth_route: bool = False) -> None:
        self.required = required
        self.auth_route = auth_route

    def __call__(
        self,
        request: Request,
        db: Session = Depends(get_db),
        user: User | None = Depends(get_optional_user),
        settings: TenantSettings = Depends(get_tenant_settings),
    ) -> Tenant | None:
        tenant_id = TenantResolver.resolve_tenant_id(request, settings)
        tenant = TenantContextLoader.load(
            db,
            tenant_id=tenant_id,
            principal=None if self.auth_route else user,
            auth_route=self.auth_route,
            required=self.required,
        )
        request.state.tenant = tenant
        request.state.tenant_id = tenant.id if tenant is not None else None
        if tenant is not None:
            set_request_context(tenant_id=str(tenant.id))
        return tenant


require_tenant = TenantContextDependency(required=True)
optional_tenant = TenantContextDependency(required=False)
auth_tenant = TenantContextDependency(required=False, auth_route=True)


def require_roles(*roles: UserRole):
    allowed = tuple(roles)

    def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        AuthorizationService.ensure_roles(request=request, user=user, roles=allowed)
        return user

    return _dependency


require_platform_admin = require_roles(UserRole.PLATFORM_ADMIN)


def rate_limit(bucket: str):
    def _dependency(request: Request) -> None:
        if not RATE_LIMIT_ENABLED:
            return
        client_ip = client_ip_from_request(request) or "unknown"
        decision = rate_limiter.check(client_key=client_ip, bucket=bucket)
        if decision.allowed:
            return
        logger.warning("Rate limit exceeded bucket=%s ip=%s path=%s", bucket, client_ip, request.url.path)
        security_events.record(
            SecurityEventKind.RATE_LIMITED,
            level=SecurityLevel.WARNING,
            reason=f"{bucket}_rate_limit",
            request=request,
            bucket=bucket,
        )
        raise RateLimited(retry_after_seconds=decision.retry_after_seconds)

    return _dependency


def get_payment_service(
    db: Session = Depends(get_db),
    provider: PaymentProvider | None = Depends(get_payment_provider),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(db, provider)

