"""Payment provider registry."""

from typing import Optional

from agenda.config import settings
from agenda.services.payments.base import (
    CheckoutResult,
    CustomerInfo,
    PaymentProvider,
    PaymentResult,
)
from agenda.services.payments.pagarme_provider import PagarmeProvider
from agenda.services.payments.stripe_provider import StripeProvider

PROVIDERS = {
    StripeProvider.name: StripeProvider,
    PagarmeProvider.name: PagarmeProvider,
}

_instances: dict[str, PaymentProvider] = {}


def get_payment_provider(name: Optional[str] = None) -> Optional[PaymentProvider]:
    """Shared provider client by name (default from settings), None if unknown."""
    key = (name or settings.PAYMENT_PROVIDER or "").lower()
    if key not in PROVIDERS:
        return None
    if key not in _instances:
        _instances[key] = PROVIDERS[key]()
    return _instances[key]


__all__ = [
    "CheckoutResult",
    "CustomerInfo",
    "PagarmeProvider",
    "PaymentProvider",
    "PaymentResult",
    "StripeProvider",
    "get_payment_provider",
]
