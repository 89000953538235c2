from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core import config
from app.core.errors import ServiceError

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "Internal server error"


def _expose_details() -> bool:
    return config.IS_DEV


def error_body(message: str, *, code: str | None = None, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if code:
        body["code"] = code
    if details is not None and _expose_details():
        body["details"] = details
    return body


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "service error code=%s status=%s path=%s message=%s",
            exc.code,
            exc.status_code,
            request.url.path,
            exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, code=exc.code, details=exc.details),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    details = None if isinstance(exc.detail, str) else exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # field errors describe the caller's own input, so they are safe in every environment
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": "Validation error", "code": "ValidationError", "errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error path=%s", request.url.path)
    message = GENERIC_SERVER_ERROR
    if _expose_details():
        message = str(exc) or GENERIC_SERVER_ERROR
    return JSONResponse(status_code=500, content=error_body(message))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
