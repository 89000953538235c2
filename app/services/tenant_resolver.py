from __future__ import annotations

import logging
from typing import Iterator

from starlette.requests import Request

from app.core.tenant_settings import TenantSettings, parse_tenant_id

logger = logging.getLogger(__name__)

TENANT_HEADERS = ("x-tenant-id", "x-restaurant-id")
TENANT_QUERY_PARAMS = ("tenant_id", "restaurantId")
TENANT_PATH_PARAMS = ("tenant_id", "restaurant_id")


class TenantResolver:
    """Work out which tenant a request targets.

    Sources are consulted in a fixed order and the first valid id wins:

    1. the ``X-Tenant-Id`` header (``X-Restaurant-Id`` kept for older apps)
    2. the ``tenant_id`` query parameter (``restaurantId`` for older apps)
    3. the process-wide default from ``TenantSettings``
    4. the ``tenant_id`` / ``restaurant_id`` path parameter

    A malformed candidate counts as absent and resolution moves on to the
    next source. Resolution never touches the database and never raises.
    """

    @staticmethod
    def iter_candidates(request: Request, settings: TenantSettings) -> Iterator[tuple[str, object]]:
        for header in TENANT_HEADERS:
            yield f"header:{header}", request.headers.get(header)
        for param in TENANT_QUERY_PARAMS:
            yield f"query:{param}", request.query_params.get(param)
        yield "default", settings.default_tenant_id
        path_params = request.scope.get("path_params") or {}
        for param in TENANT_PATH_PARAMS:
            yield f"path:{param}", path_params.get(param)

    @classmethod
    def resolve_tenant_id(cls, request: Request, settings: TenantSettings) -> int | None:
        for source, candidate in cls.iter_candidates(request, settings):
            if candidate is None:
                continue
            tenant_id = parse_tenant_id(candidate)
            if tenant_id is None:
                logger.debug("Ignoring malformed tenant id source=%s value=%r", source, candidate)
                continue
            logger.debug("Tenant id resolved source=%s tenant_id=%s", source, tenant_id)
            return tenant_id
        return None
