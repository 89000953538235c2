# app/routers/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import AccountLocked, Conflict, NotAuthenticated
from app.deps import auth_tenant, get_current_user, rate_limit
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.services.auth import (
    decode_refresh_token,
    extract_user_id,
    hash_password,
    issue_token_pair,
    verify_password,
)
from app.services.authorization_service import AuthorizationService
from app.services.login_attempts import clear_login_attempts, lock_state, register_failed_login
from app.services.security_events import SecurityEventKind, SecurityLevel, security_events

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)
    phone: str | None = None
    role: str | None = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class RefreshPayload(BaseModel):
    refresh_token: str


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "default_tenant_id": user.default_tenant_id,
    }


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit("auth"))])
def register(
    payload: RegisterPayload,
    db: Session = Depends(get_db),
    tenant: Tenant | None = Depends(auth_tenant),
):
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("Email already registered")

    requested_role = UserRole.parse(payload.role) if payload.role else None
    if payload.role and requested_role is not UserRole.CUSTOMER:
        # owners and admins are only created by a platform admin
        logger.warning("Ignoring role override at registration email=%s role=%s", email, payload.role)

    user = User(
        name=payload.name.strip(),
        email=email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
        role=UserRole.CUSTOMER.value,
        default_tenant_id=AuthorizationService.default_tenant_for_registration(
            role_override=payload.role,
            tenant=tenant,
        ),
    )
    db.add(user)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)

    logger.info("User registered user_id=%s default_tenant_id=%s", user.id, user.default_tenant_id)
    tokens = issue_token_pair(user.id, role=user.role, tenant_id=user.default_tenant_id)
    return {**tokens, "user": user_to_dict(user)}


def _authenticate(db: Session, *, email: str, password: str, tenant: Tenant | None, request: Request) -> User:
    email = email.strip().lower()
    tenant_id = tenant.id if tenant is not None else None

    state = lock_state(db, tenant_id, email)
    if state.locked:
        security_events.record(
            SecurityEventKind.LOGIN_LOCKED,
            level=SecurityLevel.WARNING,
            reason="account_locked",
            request=request,
            email=email,
            tenant_id=tenant_id,
        )
        raise AccountLocked(details={"locked_until": state.locked_until.isoformat()})

    user = db.query(User).filter(User.email == email).first()
    usable = user is not None and user.deleted_at is None and user.is_active
    if not usable or not verify_password(password, user.password_hash):
        state = register_failed_login(db, tenant_id, email)
        db.commit()
        security_events.record(
            SecurityEventKind.LOGIN_LOCKED if state.locked else SecurityEventKind.LOGIN_FAILED,
            level=SecurityLevel.WARNING,
            reason="invalid_credentials",
            request=request,
            principal_id=user.id if user is not None else None,
            email=email,
            tenant_id=tenant_id,
            failed_count=state.failed_count,
        )
        raise NotAuthenticated(INVALID_CREDENTIALS)

    AuthorizationService.ensure_login_allowed(db, user=user, tenant=tenant, request=request)

    clear_login_attempts(db, tenant_id, email)
    db.commit()
    security_events.record(
        SecurityEventKind.LOGIN_SUCCEEDED,
        level=SecurityLevel.INFO,
        request=request,
        principal_id=user.id,
        email=email,
        tenant_id=tenant_id,
    )
    return user


def _login_response(user: User, tenant: Tenant | None) -> dict:
    tenant_id = tenant.id if tenant is not None else user.default_tenant_id
    tokens = issue_token_pair(user.id, role=user.role, tenant_id=tenant_id)
    return {**tokens, "user": user_to_dict(user)}


@router.post("/login", dependencies=[Depends(rate_limit("auth"))])
def login(
    payload: LoginPayload,
    request: Request,
    db: Session = Depends(get_db),
    tenant: Tenant | None = Depends(auth_tenant),
):
    user = _authenticate(db, email=payload.email, password=payload.password, tenant=tenant, request=request)
    return _login_response(user, tenant)


@router.post("/token", dependencies=[Depends(rate_limit("auth"))])
def token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    tenant: Tenant | None = Depends(auth_tenant),
):
    """Used by the Swagger UI Authorize button, which posts username/password as form data."""
    user = _authenticate(db, email=form_data.username, password=form_data.password, tenant=tenant, request=request)
    return _login_response(user, tenant)


@router.post("/refresh")
def refresh(payload: RefreshPayload, db: Session = Depends(get_db)):
    try:
        claims = decode_refresh_token(payload.refresh_token)
    except ValueError as exc:
        raise NotAuthenticated("Invalid or expired refresh token") from exc

    user_id = extract_user_id(claims)
    user = db.query(User).filter(User.id == user_id).first() if user_id is not None else None
    if user is None or user.deleted_at is not None or not user.is_active:
        raise NotAuthenticated("Invalid or expired refresh token")

    tenant_id = user.default_tenant_id
    if UserRole.parse(user.role) is UserRole.TENANT_OWNER:
        owned = db.query(Tenant).filter(Tenant.owner_id == user.id).first()
        tenant_id = owned.id if owned is not None else None
    return issue_token_pair(user.id, role=user.role, tenant_id=tenant_id)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return user_to_dict(user)
