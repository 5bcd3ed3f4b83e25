"""
Paid-total aggregate and deposit resolution.

The paid total of an appointment is the sum of its approved payments. The
required deposit prefers the integer ``deposit_cents`` column and falls back
to the legacy decimal amount (currency units) when that is unset or zero.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.models.payment import Payment, PaymentStatus


def parse_number(value: Any) -> Optional[float]:
    """Finite number from an int, float, Decimal or numeric string; None otherwise."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
        return float(parsed) if parsed.is_finite() else None
    return None


def round_half_up(value: float | Decimal) -> int:
    """Nearest integer with halves rounded up, so 2.5 -> 3 and -2.5 -> -2."""
    half = Decimal("0.5") if isinstance(value, Decimal) else 0.5
    return math.floor(value + half)


def resolve_deposit_cents(deposit_cents: Any, legacy_amount: Any) -> int:
    parsed_deposit = parse_number(deposit_cents)
    if parsed_deposit is not None:
        rounded = round_half_up(parsed_deposit)
        if rounded > 0:
            return rounded

    parsed_legacy = parse_number(legacy_amount)
    if parsed_legacy is not None:
        cents = round_half_up(parsed_legacy * 100)
        if cents > 0:
            return cents

    return 0


async def get_paid_totals(db: AsyncSession, appointment_ids: Iterable[str]) -> dict[str, int]:
    """Approved amount per appointment; appointments without payments are absent."""
    ids = list(appointment_ids)
    if not ids:
        return {}

    result = await db.execute(
        select(Payment.appointment_id, func.coalesce(func.sum(Payment.amount_cents), 0))
        .where(
            Payment.appointment_id.in_(ids),
            Payment.status == PaymentStatus.approved.value,
        )
        .group_by(Payment.appointment_id)
    )
    return {appointment_id: int(total or 0) for appointment_id, total in result.all()}
