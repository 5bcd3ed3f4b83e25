"""
Service pricing resolution.

Works out the effective duration, price, deposit and buffer of a booking
from the service catalog: a service may be offered in several service types
(techniques), each attached through a ServiceTypeAssignment that either
keeps the type's base values or overrides some of them.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.models.service import Service, ServiceTypeAssignment
from agenda.services.payment_totals import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceBaseValues:
    base_duration_min: Any = None
    base_price_cents: Any = None
    base_deposit_cents: Any = None
    base_buffer_min: Any = None


@dataclass(frozen=True)
class AssignmentOverride:
    use_service_defaults: Optional[bool] = None
    override_duration_min: Any = None
    override_price_cents: Any = None
    override_deposit_cents: Any = None
    override_buffer_min: Any = None


@dataclass(frozen=True)
class ResolvedServiceValues:
    duration_min: int
    price_cents: int
    deposit_cents: int
    buffer_min: int


@dataclass(frozen=True)
class ServiceTypeRow:
    id: Optional[str]
    active: Optional[bool]
    base_duration_min: Any = None
    base_price_cents: Any = None
    base_deposit_cents: Any = None
    base_buffer_min: Any = None


@dataclass(frozen=True)
class AssignmentRow:
    service_type_id: Optional[str]
    override: AssignmentOverride
    service_type: Optional[ServiceTypeRow]


@dataclass(frozen=True)
class AssignmentPricingResult:
    service_type_id: Optional[str]
    final_values: ResolvedServiceValues


def normalize_int(value: Any) -> Optional[int]:
    """Round a numeric-looking value to int, or None when it is not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return round_half_up(value) if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return round_half_up(value) if value.is_finite() else None
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            return None
        return round_half_up(parsed) if parsed.is_finite() else None
    return None


def _non_negative(value: Any, fallback: int) -> int:
    normalized = normalize_int(value)
    return max(0, fallback if normalized is None else normalized)


def resolve_final_service_values(
    base_values: ServiceBaseValues,
    assignment: Optional[AssignmentOverride] = None,
) -> ResolvedServiceValues:
    """Apply an assignment's overrides on top of base values.

    Overrides are only honoured when ``use_service_defaults`` is explicitly
    False; a missing override field falls back to the base value. Every
    output is clamped at zero and the deposit never exceeds the price.
    """
    base_duration = _non_negative(base_values.base_duration_min, 0)
    base_price = _non_negative(base_values.base_price_cents, 0)
    base_deposit = min(base_price, _non_negative(base_values.base_deposit_cents, 0))
    base_buffer = _non_negative(base_values.base_buffer_min, 0)

    use_defaults = assignment is None or assignment.use_service_defaults is not False
    if use_defaults:
        return ResolvedServiceValues(
            duration_min=base_duration,
            price_cents=base_price,
            deposit_cents=base_deposit,
            buffer_min=base_buffer,
        )

    price = _non_negative(assignment.override_price_cents, base_price)
    return ResolvedServiceValues(
        duration_min=_non_negative(assignment.override_duration_min, base_duration),
        price_cents=price,
        deposit_cents=min(price, _non_negative(assignment.override_deposit_cents, base_deposit)),
        buffer_min=_non_negative(assignment.override_buffer_min, base_buffer),
    )


def select_assignment(
    rows: Iterable[AssignmentRow],
    preferred_service_type_id: Optional[str] = None,
) -> Optional[AssignmentRow]:
    """Pick the preferred assignment, else the first eligible one.

    ``rows`` must already be in creation order. Assignments whose service
    type is missing or inactive are never picked.
    """
    eligible = [
        row for row in rows
        if row.service_type is not None and row.service_type.active is not False
    ]
    if preferred_service_type_id:
        for row in eligible:
            if row.service_type_id == preferred_service_type_id:
                return row
    return eligible[0] if eligible else None


def _assignment_row(assignment: ServiceTypeAssignment) -> AssignmentRow:
    service_type = assignment.service_type
    return AssignmentRow(
        service_type_id=assignment.service_type_id,
        override=AssignmentOverride(
            use_service_defaults=assignment.use_service_defaults,
            override_duration_min=assignment.override_duration_min,
            override_price_cents=assignment.override_price_cents,
            override_deposit_cents=assignment.override_deposit_cents,
            override_buffer_min=assignment.override_buffer_min,
        ),
        service_type=ServiceTypeRow(
            id=service_type.id,
            active=service_type.active,
            base_duration_min=service_type.base_duration_min,
            base_price_cents=service_type.base_price_cents,
            base_deposit_cents=service_type.base_deposit_cents,
            base_buffer_min=service_type.base_buffer_min,
        ) if service_type is not None else None,
    )


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


async def resolve_service_pricing(
    db: AsyncSession,
    service_id: str,
    preferred_service_type_id: Optional[str] = None,
    service: Optional[Service] = None,
) -> Optional[AssignmentPricingResult]:
    """Resolve booking values through the service's type assignments.

    Returns None when the service has no eligible assignment; callers then
    fall back to the service's own columns.
    """
    result = await db.execute(
        select(ServiceTypeAssignment)
        .where(ServiceTypeAssignment.service_id == service_id)
        .order_by(
            ServiceTypeAssignment.created_at.asc().nulls_first(),
            ServiceTypeAssignment.service_type_id.asc().nulls_first(),
        )
    )
    rows = [_assignment_row(a) for a in result.unique().scalars().all()]

    picked = select_assignment(rows, preferred_service_type_id)
    if picked is None:
        return None

    service_type = picked.service_type
    base = ServiceBaseValues(
        base_duration_min=_first_present(service_type.base_duration_min, getattr(service, "duration_min", None)),
        base_price_cents=_first_present(service_type.base_price_cents, getattr(service, "price_cents", None)),
        base_deposit_cents=_first_present(service_type.base_deposit_cents, getattr(service, "deposit_cents", None)),
        base_buffer_min=_first_present(service_type.base_buffer_min, getattr(service, "buffer_min", None)),
    )

    return AssignmentPricingResult(
        service_type_id=picked.service_type_id or service_type.id,
        final_values=resolve_final_service_values(base, picked.override),
    )


async def resolve_service_values(
    db: AsyncSession,
    service: Service,
    preferred_service_type_id: Optional[str] = None,
    default_buffer_min: int = 15,
) -> tuple[ResolvedServiceValues, Optional[str]]:
    """Resolved values for a booking, never None.

    Uses the type assignments when one resolves, otherwise the service's bare
    columns with the configured default buffer.
    """
    pricing = await resolve_service_pricing(db, service.id, preferred_service_type_id, service=service)
    if pricing is not None:
        return pricing.final_values, pricing.service_type_id

    logger.debug(f"No eligible service type assignment for service {service.id}, using base values")
    fallback = resolve_final_service_values(
        ServiceBaseValues(
            base_duration_min=service.duration_min,
            base_price_cents=service.price_cents,
            base_deposit_cents=service.deposit_cents,
            base_buffer_min=_first_present(service.buffer_min, default_buffer_min),
        )
    )
    return fallback, None
