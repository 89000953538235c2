from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.request_context import clear_request_context, client_ip_from_request, set_request_context

logger = logging.getLogger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        client_ip = client_ip_from_request(request)
        request.state.request_id = request_id
        set_request_context(request_id=request_id, client_ip=client_ip)

        status_code = 500
        endpoint = request.url.path
        method = request.method
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            tenant_id = _extract_tenant_id(request)
            user_id = _extract_user_id(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)

            logger.log(
                logging.WARNING if status_code >= 500 else logging.INFO,
                "request completed",
                extra={
                    "request_id": request_id,
                    "tenant_id": tenant_id,
                    "user_id": user_id,
                    "client_ip": client_ip,
                    "endpoint": endpoint,
                    "method": method,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            clear_request_context()


def _extract_tenant_id(request: Request) -> str | None:
    # only the validated tenant is reported, never the raw inbound candidate
    tenant_id = getattr(request.state, "tenant_id", None)
    return str(tenant_id) if tenant_id is not None else None


def _extract_user_id(request: Request) -> str | None:
    user = getattr(request.state, "user", None)
    if user is None:
        return None
    user_id = getattr(user, "id", None)
    return str(user_id) if user_id is not None else None
