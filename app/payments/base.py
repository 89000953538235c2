from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol


@dataclass
class ProviderIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created: datetime | None = None
    payment_method_types: list[str] = field(default_factory=list)
    raw: dict[str, Any] | None = None


@dataclass
class ProviderRefund:
    id: str
    status: str
    amount: int
    payment_intent_id: str | None = None


class PaymentProvider(Protocol):
    """Opaque payment service. Amounts are in minor units (cents).

    Implementations raise ``PaymentProviderError`` for rejected calls and
    ``PaymentProviderTimeout`` when the provider does not answer in time.
    """

    name: str

    def create_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        payment_method_types: list[str] | None = None,
    ) -> ProviderIntent:
        ...

    def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        ...

    def refund(self, *, intent_id: str, amount_minor: int | None = None) -> ProviderRefund:
        ...

    def list_intents(
        self,
        *,
        limit: int = 100,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[ProviderIntent]:
        ...


def to_minor_units(amount: Any) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def metadata_str(values: dict[str, Any]) -> dict[str, str]:
    return {key: str(value) for key, value in values.items() if value is not None}
