"""
Checkout creation for appointment payments.

A customer pays the deposit, the remaining balance or the full price of an
appointment through a provider-hosted checkout. Each checkout is recorded
as a pending Payment that the webhooks later settle.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig, settings
from agenda.exceptions import BusinessRuleError, ExternalServiceError, NotFoundError
from agenda.models.appointment import Appointment, Customer
from agenda.models.payment import Payment, PaymentKind, PaymentStatus
from agenda.services.payment_reconciliation import classify_order
from agenda.services.payment_totals import get_paid_totals, round_half_up
from agenda.services.payments.base import CustomerInfo, PaymentProvider

logger = logging.getLogger(__name__)

CHECKOUT_TITLES = {
    PaymentKind.deposit: "Sinal",
    PaymentKind.balance: "Saldo",
    PaymentKind.full: "Integral",
}


@dataclass(frozen=True)
class CheckoutAmount:
    amount_cents: int
    title: str
    covers_deposit: bool


@dataclass
class CheckoutSession:
    payment_id: str
    provider: str
    order_id: str
    amount_cents: int
    checkout_url: Optional[str] = None
    client_secret: Optional[str] = None
    reused: bool = False


def parse_cents(value: Any) -> Optional[int]:
    """Money amount in cents.

    Integers are already cents; fractional numbers and strings with a
    decimal separator ("12.50" or "12,50") are currency units.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        if isinstance(value, Decimal) and not value.is_finite():
            return None
        if value == int(value):
            return int(value)
        return round_half_up(Decimal(str(value)) * 100)
    if isinstance(value, str):
        text = value.strip().replace(",", ".", 1)
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
        if not parsed.is_finite():
            return None
        return round_half_up(parsed * 100) if "." in text else round_half_up(parsed)
    return None


def compute_checkout_amount(
    mode: PaymentKind,
    total_cents: Any,
    deposit_cents: Any,
    paid_cents: Any = 0,
) -> CheckoutAmount:
    total = parse_cents(total_cents)
    if total is None or total <= 0:
        raise BusinessRuleError("Appointment has no valid total", reason="invalid_total")

    mode = PaymentKind(mode)
    if mode == PaymentKind.deposit:
        deposit = parse_cents(deposit_cents)
        if deposit is None or deposit <= 0:
            raise BusinessRuleError("No deposit configured for this appointment", reason="deposit_not_configured")
        amount, covers_deposit = deposit, True
    elif mode == PaymentKind.balance:
        paid = max(0, parse_cents(paid_cents) or 0)
        amount, covers_deposit = max(total - paid, 0), False
    else:
        amount, covers_deposit = total, True

    if amount <= 0:
        raise BusinessRuleError("Nothing left to pay", reason="nothing_to_pay")

    return CheckoutAmount(amount_cents=amount, title=CHECKOUT_TITLES[mode], covers_deposit=covers_deposit)


async def _reusable_checkout(
    db: AsyncSession,
    appointment_id: str,
    mode: PaymentKind,
    amount_cents: int,
    provider: PaymentProvider,
    config: SchedulingConfig,
) -> Optional[CheckoutSession]:
    """Latest still-open checkout of the same kind and amount, if any."""
    result = await db.execute(
        select(Payment)
        .where(
            Payment.appointment_id == appointment_id,
            Payment.provider == provider.name,
            Payment.kind == mode.value,
            Payment.status == PaymentStatus.pending.value,
        )
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing is None or not existing.provider_payment_id or existing.amount_cents != amount_cents:
        return None

    checkout = (existing.payload or {}).get("checkout") or {}
    if not checkout.get("url") and not checkout.get("client_secret"):
        return None

    try:
        order = await asyncio.wait_for(
            provider.get_order(existing.provider_payment_id), timeout=config.provider_timeout_seconds
        )
    except Exception as e:
        logger.warning(f"Could not check existing checkout {existing.provider_payment_id}: {e}")
        return None
    if order is None:
        return None

    status = classify_order(order, "")
    if status == PaymentStatus.approved:
        raise BusinessRuleError("This payment was already completed", reason="already_paid")
    if status not in (None, PaymentStatus.pending):
        return None

    return CheckoutSession(
        payment_id=existing.id,
        provider=provider.name,
        order_id=existing.provider_payment_id,
        amount_cents=existing.amount_cents,
        checkout_url=checkout.get("url"),
        client_secret=checkout.get("client_secret"),
        reused=True,
    )


async def create_payment_checkout(
    db: AsyncSession,
    appointment_id: str,
    customer_id: Optional[str],
    mode: PaymentKind,
    provider: PaymentProvider,
    config: Optional[SchedulingConfig] = None,
) -> CheckoutSession:
    config = config or SchedulingConfig()
    mode = PaymentKind(mode)

    appointment = await db.get(Appointment, appointment_id)
    if appointment is None or not appointment.customer_id or appointment.customer_id != customer_id:
        raise NotFoundError("Appointment", appointment_id, reason="appointment_not_found")

    paid = (await get_paid_totals(db, [appointment.id])).get(appointment.id, 0)
    amount = compute_checkout_amount(mode, appointment.total_cents, appointment.deposit_cents, paid)

    reused = await _reusable_checkout(db, appointment.id, mode, amount.amount_cents, provider, config)
    if reused is not None:
        logger.info(f"Reusing checkout {reused.order_id} for appointment {appointment.id}")
        return reused

    customer = await db.get(Customer, appointment.customer_id)
    try:
        checkout = await asyncio.wait_for(
            provider.create_order(
                title=amount.title,
                amount_cents=amount.amount_cents,
                reference=appointment.id,
                notification_url=f"{settings.public_base_url}/webhooks/{provider.name}",
                customer=CustomerInfo(
                    name=customer.full_name if customer else None,
                    email=customer.email if customer else None,
                    phone=customer.whatsapp if customer else None,
                ),
            ),
            timeout=config.provider_timeout_seconds,
        )
    except asyncio.TimeoutError:
        raise ExternalServiceError(provider.name, "checkout creation timed out")

    payment = Payment(
        appointment_id=appointment.id,
        provider=provider.name,
        provider_payment_id=checkout.order_id,
        kind=mode.value,
        covers_deposit=amount.covers_deposit,
        status=PaymentStatus.pending.value,
        amount_cents=amount.amount_cents,
        payload={
            "checkout": {"url": checkout.checkout_url, "client_secret": checkout.client_secret},
            "order": checkout.raw or None,
        },
    )
    db.add(payment)
    await db.commit()
    await db.refresh(payment)

    logger.info(
        f"Checkout {checkout.order_id} created via {provider.name} for appointment "
        f"{appointment.id}: {mode.value} {amount.amount_cents}"
    )
    return CheckoutSession(
        payment_id=payment.id,
        provider=provider.name,
        order_id=checkout.order_id,
        amount_cents=amount.amount_cents,
        checkout_url=checkout.checkout_url,
        client_secret=checkout.client_secret,
    )
