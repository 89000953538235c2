from __future__ import annotations

from contextvars import ContextVar

from starlette.requests import Request


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_TENANT_ID_CTX: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_USER_ID_CTX: ContextVar[str | None] = ContextVar("user_id", default=None)
_CLIENT_IP_CTX: ContextVar[str | None] = ContextVar("client_ip", default=None)


def set_request_context(
    *,
    request_id: str | None = None,
    tenant_id: str | None = None,
    user_id: str | None = None,
    client_ip: str | None = None,
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if tenant_id is not None:
        _TENANT_ID_CTX.set(tenant_id)
    if user_id is not None:
        _USER_ID_CTX.set(user_id)
    if client_ip is not None:
        _CLIENT_IP_CTX.set(client_ip)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_tenant_id() -> str | None:
    return _TENANT_ID_CTX.get()


def get_user_id() -> str | None:
    return _USER_ID_CTX.get()


def get_client_ip() -> str | None:
    return _CLIENT_IP_CTX.get()


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _TENANT_ID_CTX.set(None)
    _USER_ID_CTX.set(None)
    _CLIENT_IP_CTX.set(None)


def client_ip_from_request(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    client = request.client
    return client.host if client else None
