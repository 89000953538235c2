from __future__ import annotations

import logging

from app.core.config import PAYMENT_PROVIDER, STRIPE_SECRET_KEY
from app.payments.base import PaymentProvider
from app.payments.mock_provider import MockPaymentProvider
from app.payments.stripe_provider import StripePaymentProvider

logger = logging.getLogger(__name__)

_provider: PaymentProvider | None = None
_resolved = False


def build_payment_provider(
    *,
    provider_name: str = PAYMENT_PROVIDER,
    stripe_secret_key: str = STRIPE_SECRET_KEY,
) -> PaymentProvider | None:
    if provider_name == "mock":
        logger.warning("Using in-memory mock payment provider")
        return MockPaymentProvider()
    if stripe_secret_key:
        return StripePaymentProvider(stripe_secret_key)
    logger.warning("No payment provider configured (STRIPE_SECRET_KEY missing)")
    return None


def get_payment_provider() -> PaymentProvider | None:
    """Process-wide provider, or None when payments are not configured."""
    global _provider, _resolved
    if not _resolved:
        _provider = build_payment_provider()
        _resolved = True
    return _provider
