from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone

from app.core.request_context import get_client_ip, get_request_id, get_tenant_id, get_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_SENSITIVE_PATTERNS = [
    re.compile(r"(authorization\s*[:=]\s*bearer\s+)([^\s\"]+)", re.IGNORECASE),
    re.compile(r"(token\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(password\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(secret\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(pi_[A-Za-z0-9]+_secret_)([A-Za-z0-9]+)"),
    re.compile(r"(sk_(?:live|test)_)([A-Za-z0-9]+)"),
]

_OPTIONAL_FIELDS = ("endpoint", "method", "status_code", "client_ip")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", None) or get_request_id(),
            "tenant_id": getattr(record, "tenant_id", None) or get_tenant_id(),
            "user_id": getattr(record, "user_id", None) or get_user_id(),
            "module": record.name,
            "message": self._mask(self.formatMessage(record)),
            "duration_ms": getattr(record, "duration_ms", None),
        }
        if getattr(record, "client_ip", None) is None and get_client_ip():
            payload["client_ip"] = get_client_ip()
        for field in _OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        for key, value in record.__dict__.items():
            if key.startswith("security_") and value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self._mask(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)

    def _mask(self, value: str) -> str:
        masked = value
        for pattern in _SENSITIVE_PATTERNS:
            masked = pattern.sub(r"\1***", masked)
        return masked


def configure_logging() -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(LOG_LEVEL)

    handler = logging.StreamHandler()
    formatter = JsonFormatter("%(message)s")
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "security"):
        logging.getLogger(logger_name).setLevel(LOG_LEVEL)
