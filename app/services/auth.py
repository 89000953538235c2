from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from app.core.config import (
    JWT_ALGORITHM,
    JWT_EXPIRE_MINUTES,
    JWT_REFRESH_EXPIRE_DAYS,
    JWT_REFRESH_SECRET_KEY,
    JWT_SECRET_KEY,
)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


# =========================
# PASSWORD (bcrypt directly)
# =========================
def _normalize_password_for_bcrypt(password: str) -> bytes:
    """bcrypt only looks at the first 72 bytes; longer input would raise on bcrypt>=4.1."""
    pw = (password or "").encode("utf-8")
    return pw[:72]


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(_normalize_password_for_bcrypt(password), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_normalize_password_for_bcrypt(plain_password), (password_hash or "").encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def password_looks_hashed(password: str) -> bool:
    return password.startswith(("$2a$", "$2b$", "$2y$"))


# =========================
# JWT HELPERS
# =========================
def _encode(
    user_id: int | str,
    *,
    token_type: str,
    secret: str,
    expires_delta: timedelta,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        # "sub" must be a string for python-jose
        "sub": str(user_id),
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def create_access_token(
    user_id: int | str,
    extra: Optional[Dict[str, Any]] = None,
    expires_minutes: int = JWT_EXPIRE_MINUTES,
) -> str:
    return _encode(
        user_id,
        token_type=ACCESS_TOKEN_TYPE,
        secret=JWT_SECRET_KEY,
        expires_delta=timedelta(minutes=expires_minutes),
        extra=extra,
    )


def create_refresh_token(user_id: int | str, expires_days: int = JWT_REFRESH_EXPIRE_DAYS) -> str:
    return _encode(
        user_id,
        token_type=REFRESH_TOKEN_TYPE,
        secret=JWT_REFRESH_SECRET_KEY,
        expires_delta=timedelta(days=expires_days),
    )


def _decode(token: str, *, secret: str, expected_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired token") from exc
    if payload.get("type") != expected_type:
        raise ValueError("Unexpected token type")
    return payload


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return the JWT payload or raise ValueError when invalid."""
    return _decode(token, secret=JWT_SECRET_KEY, expected_type=ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> Dict[str, Any]:
    return _decode(token, secret=JWT_REFRESH_SECRET_KEY, expected_type=REFRESH_TOKEN_TYPE)


def extract_user_id(payload: Dict[str, Any]) -> Optional[int]:
    raw = payload.get("sub", payload.get("user_id"))
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


def issue_token_pair(user_id: int, *, role: str, tenant_id: int | None) -> Dict[str, Any]:
    access_token = create_access_token(user_id, extra={"role": role, "tenant_id": tenant_id})
    return {
        "access_token": access_token,
        "refresh_token": create_refresh_token(user_id),
        "token_type": "bearer",
        "expires_in": JWT_EXPIRE_MINUTES * 60,
    }
