from __future__ import annotations

import logging

from app.core.rate_limiter import InMemoryRateLimiterService, RateLimitRule
from app.services.security_events import SecurityEventKind, SecurityEventRecorder, SecurityLevel


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _sink():
    sink = logging.getLogger("tests.security")
    sink.handlers.clear()
    sink.propagate = False
    sink.setLevel(logging.INFO)
    handler = ListHandler()
    sink.addHandler(handler)
    return sink, handler


def test_rate_limit_is_isolated_per_client() -> None:
    service = InMemoryRateLimiterService({"auth": RateLimitRule(limit=2, window_seconds=60)})

    first = service.check(client_key="203.0.113.1", bucket="auth")
    second = service.check(client_key="203.0.113.1", bucket="auth")
    blocked = service.check(client_key="203.0.113.1", bucket="auth")
    other_client = service.check(client_key="203.0.113.2", bucket="auth")

    assert first.allowed is True
    assert second.remaining == 0
    assert blocked.allowed is False
    assert blocked.retry_after_seconds >= 1
    assert other_client.allowed is True


def test_rate_limit_buckets_are_independent() -> None:
    service = InMemoryRateLimiterService(
        {
            "auth": RateLimitRule(limit=1, window_seconds=60),
            "payment": RateLimitRule(limit=1, window_seconds=60),
        }
    )

    assert service.check(client_key="10.0.0.1", bucket="auth").allowed is True
    assert service.check(client_key="10.0.0.1", bucket="payment").allowed is True
    assert service.check(client_key="10.0.0.1", bucket="auth").allowed is False


def test_window_expiry_and_reset(monkeypatch) -> None:
    clock = {"now": 1000.0}
    monkeypatch.setattr("app.core.rate_limiter.time.monotonic", lambda: clock["now"])
    service = InMemoryRateLimiterService({"auth": RateLimitRule(limit=1, window_seconds=10)})

    assert service.check(client_key="ip", bucket="auth").allowed is True
    assert service.check(client_key="ip", bucket="auth").allowed is False
    clock["now"] += 11
    assert service.check(client_key="ip", bucket="auth").allowed is True

    service.reset()
    assert service.check(client_key="ip", bucket="auth").allowed is True


def test_security_events_are_written_by_worker() -> None:
    sink, handler = _sink()
    recorder = SecurityEventRecorder(max_queue_size=10, sink=sink)

    queued = recorder.record(
        SecurityEventKind.CROSS_TENANT_LOGIN_DENIED,
        level=SecurityLevel.ALERT,
        reason="customer_tenant_mismatch",
        principal_id=5,
        email="awa@example.com",
        tenant_id=2,
    )
    assert recorder.flush() is True
    recorder.stop()

    assert queued is True
    assert len(handler.records) == 1
    record = handler.records[0]
    assert record.levelno == logging.ERROR
    assert record.security_event == "cross_tenant_login_denied"
    assert record.security_tenant_id == 2
    assert record.security_principal_id == 5


def test_full_queue_drops_and_counts_events() -> None:
    sink, handler = _sink()
    recorder = SecurityEventRecorder(max_queue_size=1, autostart=False, sink=sink)

    assert recorder.record(SecurityEventKind.LOGIN_FAILED) is True
    assert recorder.record(SecurityEventKind.LOGIN_FAILED) is False
    assert recorder.dropped_count == 1

    recorder.start()
    assert recorder.flush() is True
    recorder.stop()
    assert len(handler.records) == 1
