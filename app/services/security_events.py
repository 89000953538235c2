"""Fire-and-forget recording of security-relevant events.

Events go through a bounded in-process queue and are written to the
``security`` logger by a daemon thread, so the request path never waits on
log I/O. When the queue is full the event is dropped and counted.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from starlette.requests import Request

from app.core.config import SECURITY_EVENT_QUEUE_SIZE
from app.core.request_context import client_ip_from_request, get_client_ip, get_request_id
from app.core.timeutils import utcnow

logger = logging.getLogger(__name__)

SECURITY_LOGGER_NAME = "security"


class SecurityLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ALERT = "ALERT"


_LOG_LEVELS = {
    SecurityLevel.INFO: logging.INFO,
    SecurityLevel.WARNING: logging.WARNING,
    SecurityLevel.ALERT: logging.ERROR,
}


class SecurityEventKind(str, Enum):
    CROSS_TENANT_LOGIN_DENIED = "cross_tenant_login_denied"
    LOGIN_FAILED = "login_failed"
    LOGIN_LOCKED = "login_locked"
    LOGIN_SUCCEEDED = "login_succeeded"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"


@dataclass
class SecurityEvent:
    kind: str
    level: SecurityLevel
    reason: str | None = None
    ip: str | None = None
    principal_id: int | None = None
    email: str | None = None
    tenant_id: int | None = None
    request_id: str | None = None
    endpoint: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)
    extra: dict[str, Any] = field(default_factory=dict)

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "security_event": self.kind,
            "security_level": self.level.value,
            "security_reason": self.reason,
            "security_ip": self.ip,
            "security_principal_id": self.principal_id,
            "security_email": self.email,
            "security_tenant_id": self.tenant_id,
            "security_endpoint": self.endpoint,
            "security_occurred_at": self.occurred_at.isoformat(),
            "security_extra": self.extra or None,
            "request_id": self.request_id,
        }


class SecurityEventRecorder:
    def __init__(
        self,
        *,
        max_queue_size: int = SECURITY_EVENT_QUEUE_SIZE,
        autostart: bool = True,
        sink: logging.Logger | None = None,
    ) -> None:
        self._queue: queue.Queue[SecurityEvent | None] = queue.Queue(maxsize=max(1, max_queue_size))
        self._autostart = autostart
        self._sink = sink or logging.getLogger(SECURITY_LOGGER_NAME)
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self.dropped_count = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._worker = threading.Thread(target=self._run, name="security-events", daemon=True)
            self._worker.start()

    def stop(self, timeout: float = 2.0) -> None:
        worker = self._worker
        if worker is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("security event queue still full at shutdown dropped=%s", self.dropped_count)
            return
        worker.join(timeout)
        self._worker = None

    def flush(self, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def record(
        self,
        kind: SecurityEventKind | str,
        *,
        level: SecurityLevel = SecurityLevel.WARNING,
        reason: str | None = None,
        request: Request | None = None,
        principal_id: int | None = None,
        email: str | None = None,
        tenant_id: int | None = None,
        **extra: Any,
    ) -> bool:
        """Queue an event without blocking. Returns False when it was dropped."""
        try:
            event = SecurityEvent(
                kind=kind.value if isinstance(kind, SecurityEventKind) else str(kind),
                level=level,
                reason=reason,
                ip=client_ip_from_request(request) or get_client_ip(),
                principal_id=principal_id,
                email=email,
                tenant_id=tenant_id,
                request_id=get_request_id(),
                endpoint=f"{request.method} {request.url.path}" if request is not None else None,
                extra=extra,
            )
            if self._autostart and not self.running:
                self.start()
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            with self._lock:
                self.dropped_count += 1
            return False
        except Exception:
            logger.exception("failed to queue security event kind=%s", kind)
            return False

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    return
                self._emit(event)
            finally:
                self._queue.task_done()

    def _emit(self, event: SecurityEvent) -> None:
        try:
            self._sink.log(
                _LOG_LEVELS[event.level],
                "security event %s reason=%s",
                event.kind,
                event.reason,
                extra=event.as_log_fields(),
            )
        except Exception:
            logger.exception("failed to write security event kind=%s", event.kind)


security_events = SecurityEventRecorder()
