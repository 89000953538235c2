from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import DEFAULT_TENANT_ID_RAW

logger = logging.getLogger(__name__)


def parse_tenant_id(raw: object) -> int | None:
    """Parse a tenant id candidate.

    Only strictly positive base-10 integers are accepted. Anything else
    (empty, signed, decimal, alphanumeric) is reported as absent.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None

    text = str(raw).strip()
    if not text or not text.isascii() or not text.isdigit():
        return None

    value = int(text)
    return value if value > 0 else None


@dataclass(frozen=True)
class TenantSettings:
    default_tenant_id: int | None = None


def load_tenant_settings(raw_default: str | None = None) -> TenantSettings:
    raw = DEFAULT_TENANT_ID_RAW if raw_default is None else raw_default
    default_tenant_id = parse_tenant_id(raw)
    if raw and default_tenant_id is None:
        logger.warning("Ignoring malformed DEFAULT_TENANT_ID value=%r", raw)
    return TenantSettings(default_tenant_id=default_tenant_id)


_tenant_settings: TenantSettings | None = None


def init_tenant_settings(settings: TenantSettings | None = None) -> TenantSettings:
    global _tenant_settings
    _tenant_settings = settings or load_tenant_settings()
    logger.info("Tenant settings loaded default_tenant_id=%s", _tenant_settings.default_tenant_id)
    return _tenant_settings


def get_tenant_settings() -> TenantSettings:
    if _tenant_settings is None:
        return init_tenant_settings()
    return _tenant_settings
