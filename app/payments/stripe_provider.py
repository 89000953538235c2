from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core.config import PAYMENT_PROVIDER_TIMEOUT_SECONDS, STRIPE_API_BASE
from app.core.errors import PaymentProviderError, PaymentProviderTimeout
from app.payments.base import ProviderIntent, ProviderRefund

logger = logging.getLogger(__name__)


def _parse_intent(data: dict[str, Any]) -> ProviderIntent:
    created = data.get("created")
    return ProviderIntent(
        id=data["id"],
        status=data.get("status") or "",
        amount=int(data.get("amount") or 0),
        currency=data.get("currency") or "",
        client_secret=data.get("client_secret"),
        metadata=dict(data.get("metadata") or {}),
        created=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        payment_method_types=list(data.get("payment_method_types") or []),
        raw=data,
    )


class StripePaymentProvider:
    """Stripe PaymentIntents over the REST API (form-encoded, basic auth with the secret key)."""

    name = "stripe"
    API_VERSION = "2023-10-16"

    def __init__(
        self,
        secret_key: str,
        *,
        api_base: str = STRIPE_API_BASE,
        timeout: float = PAYMENT_PROVIDER_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._api_base,
            auth=(self._secret_key, ""),
            headers={"Stripe-Version": self.API_VERSION},
            timeout=self._timeout,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, *, data: dict[str, str] | None = None, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            with self._client() as client:
                response = client.request(method, path, data=data, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("Stripe timeout method=%s path=%s timeout=%s", method, path, self._timeout)
            raise PaymentProviderTimeout(details={"path": path}) from exc
        except httpx.HTTPError as exc:
            logger.warning("Stripe transport error method=%s path=%s error=%s", method, path, exc)
            raise PaymentProviderError(f"Payment provider unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            message = (error or {}).get("message") or f"Stripe HTTP {response.status_code}"
            logger.warning(
                "Stripe error method=%s path=%s status=%s code=%s",
                method,
                path,
                response.status_code,
                (error or {}).get("code"),
            )
            raise PaymentProviderError(message, details={"provider_status": response.status_code, "code": (error or {}).get("code")})

        return body

    def create_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        payment_method_types: list[str] | None = None,
    ) -> ProviderIntent:
        data: dict[str, str] = {"amount": str(amount_minor), "currency": currency.lower()}
        if payment_method_types:
            for index, method in enumerate(payment_method_types):
                data[f"payment_method_types[{index}]"] = method
        else:
            data["automatic_payment_methods[enabled]"] = "true"
        if description:
            data["description"] = description
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)

        return _parse_intent(self._request("POST", "/payment_intents", data=data))

    def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        return _parse_intent(self._request("GET", f"/payment_intents/{intent_id}"))

    def refund(self, *, intent_id: str, amount_minor: int | None = None) -> ProviderRefund:
        data = {"payment_intent": intent_id}
        if amount_minor is not None:
            data["amount"] = str(amount_minor)
        body = self._request("POST", "/refunds", data=data)
        return ProviderRefund(
            id=body["id"],
            status=body.get("status") or "",
            amount=int(body.get("amount") or 0),
            payment_intent_id=body.get("payment_intent"),
        )

    def list_intents(
        self,
        *,
        limit: int = 100,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[ProviderIntent]:
        params: dict[str, Any] = {"limit": max(1, min(100, limit))}
        if created_gte is not None:
            params["created[gte]"] = int(created_gte.timestamp())
        if created_lte is not None:
            params["created[lte]"] = int(created_lte.timestamp())
        body = self._request("GET", "/payment_intents", params=params)
        return [_parse_intent(item) for item in body.get("data") or []]
