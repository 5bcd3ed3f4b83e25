"""
Payment provider contract and typed provider snapshots.

Provider clients translate their wire formats into the small dataclasses
below before anything reaches the reconciliation logic.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union


@dataclass
class PaymentResult:
    """Result of a refund or any other provider-side mutation."""

    success: bool
    charge_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class CheckoutResult:
    order_id: str
    checkout_url: Optional[str] = None
    client_secret: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass
class CustomerInfo:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class PagarmeCharge:
    id: Optional[str]
    status: str  # paid, partial_paid, pending, canceled, failed, ...
    amount: int = 0
    paid_amount: int = 0


@dataclass(frozen=True)
class PagarmeOrder:
    id: str
    status: str
    charges: tuple[PagarmeCharge, ...] = ()
    appointment_id: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class StripeChargeSnapshot:
    id: Optional[str]
    amount_captured: int = 0
    amount_refunded: int = 0


@dataclass(frozen=True)
class StripeSession:
    id: str
    payment_status: Optional[str]  # paid, unpaid, no_payment_required
    payment_intent_id: Optional[str] = None
    payment_intent_status: Optional[str] = None
    charges: tuple[StripeChargeSnapshot, ...] = ()
    appointment_id: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False)


ProviderOrder = Union[PagarmeOrder, StripeSession]


class PaymentProvider(Protocol):
    """What the booking core needs from a payment provider."""

    name: str

    async def create_order(
        self,
        title: str,
        amount_cents: int,
        reference: str,
        notification_url: str,
        customer: Optional[CustomerInfo] = None,
    ) -> CheckoutResult:
        ...

    async def get_order(self, order_id: str) -> Optional[ProviderOrder]:
        ...

    async def refund(self, charge_id: str, amount_cents: Optional[int] = None) -> PaymentResult:
        ...

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        ...


def as_int(value: Any) -> int:
    """Cents from a provider field, 0 when absent or not a number."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0
