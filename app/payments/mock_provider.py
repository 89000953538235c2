from __future__ import annotations

import uuid
from datetime import datetime
from threading import Lock

from app.core.errors import PaymentProviderError
from app.core.timeutils import as_utc, utcnow
from app.payments.base import ProviderIntent, ProviderRefund


class MockPaymentProvider:
    """In-memory provider for local development (``PAYMENT_PROVIDER=mock``) and tests.

    Intents start as ``requires_payment_method``; ``set_status`` simulates what
    the client SDK and the provider would do afterwards.
    """

    name = "mock"

    def __init__(self) -> None:
        self._intents: dict[str, ProviderIntent] = {}
        self._refunds: list[ProviderRefund] = []
        self._lock = Lock()

    def create_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        payment_method_types: list[str] | None = None,
    ) -> ProviderIntent:
        intent_id = f"pi_mock{uuid.uuid4().hex[:16]}"
        intent = ProviderIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount_minor,
            currency=currency.lower(),
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:12]}",
            metadata=dict(metadata),
            created=utcnow(),
            payment_method_types=list(payment_method_types or ["card"]),
        )
        with self._lock:
            self._intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        with self._lock:
            intent = self._intents.get(intent_id)
        if intent is None:
            raise PaymentProviderError(f"No such payment_intent: '{intent_id}'")
        return intent

    def set_status(self, intent_id: str, status: str) -> ProviderIntent:
        intent = self.retrieve_intent(intent_id)
        intent.status = status
        return intent

    def refund(self, *, intent_id: str, amount_minor: int | None = None) -> ProviderRefund:
        intent = self.retrieve_intent(intent_id)
        if intent.status != "succeeded":
            raise PaymentProviderError(f"PaymentIntent {intent_id} has not been captured")
        amount = intent.amount if amount_minor is None else amount_minor
        if amount <= 0 or amount > intent.amount:
            raise PaymentProviderError(f"Refund amount ({amount}) is greater than charge amount ({intent.amount})")
        refund = ProviderRefund(
            id=f"re_mock{uuid.uuid4().hex[:16]}",
            status="succeeded",
            amount=amount,
            payment_intent_id=intent_id,
        )
        with self._lock:
            self._refunds.append(refund)
        return refund

    def list_intents(
        self,
        *,
        limit: int = 100,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[ProviderIntent]:
        with self._lock:
            intents = sorted(self._intents.values(), key=lambda item: item.created or utcnow(), reverse=True)
        if created_gte is not None:
            intents = [item for item in intents if item.created and item.created >= as_utc(created_gte)]
        if created_lte is not None:
            intents = [item for item in intents if item.created and item.created <= as_utc(created_lte)]
        return intents[:limit]

    @property
    def refunds(self) -> list[ProviderRefund]:
        return list(self._refunds)
