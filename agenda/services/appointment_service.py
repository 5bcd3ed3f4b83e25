"""
Customer-facing appointment operations: booking, cancellation with refunds,
and rescheduling.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.exceptions import BusinessRuleError, ConflictError, NotFoundError
from agenda.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from agenda.models.branch import Branch, Staff
from agenda.models.payment import Payment, PaymentStatus
from agenda.models.service import Service
from agenda.services.appointment_lifecycle import assert_transition
from agenda.services.availability_service import (
    compute_available_slots,
    is_slot_available,
    select_staff_for_weekday,
)
from agenda.services.availability_snapshot import SnapshotAppointment
from agenda.services.payment_totals import get_paid_totals, resolve_deposit_cents
from agenda.services.payments import PaymentProvider, get_payment_provider
from agenda.services.pricing import resolve_service_values
from agenda.utils.timezone import ensure_utc, get_timezone, hours_between, local_weekday, to_local

logger = logging.getLogger(__name__)

ProviderLookup = Callable[[str], Optional[PaymentProvider]]


@dataclass(frozen=True)
class RefundAllocation:
    payment_id: str
    provider: str
    provider_payment_id: Optional[str]
    amount_cents: int
    payment_amount_cents: int


@dataclass
class CancellationResult:
    appointment_id: str
    refunded_cents: int
    failed_payment_ids: list[str] = field(default_factory=list)


@dataclass
class RescheduleResult:
    starts_at: datetime
    ends_at: datetime


# =========================================================================
# Pure rules
# =========================================================================


def is_within_penalty_window(starts_at: datetime, now: datetime, threshold_hours: float) -> bool:
    """True when fewer than ``threshold_hours`` remain before the start."""
    return hours_between(starts_at, now) < threshold_hours


def compute_refund_cents(deposit_cents: int, paid_cents: int, within_penalty_window: bool) -> int:
    """Refundable amount; inside the penalty window the deposit is forfeited."""
    paid = max(0, paid_cents or 0)
    if not within_penalty_window:
        return paid
    return max(paid - max(0, deposit_cents or 0), 0)


def allocate_refunds(payments: Sequence[Payment], refund_cents: int) -> list[RefundAllocation]:
    """Spread a refund over approved payments, oldest first.

    ``payments`` must already be ordered by creation time. The last payment
    touched may be refunded partially.
    """
    allocations = []
    remaining = max(0, refund_cents)
    for payment in payments:
        if remaining <= 0:
            break
        amount = min(remaining, max(0, payment.amount_cents or 0))
        if amount <= 0:
            continue
        allocations.append(
            RefundAllocation(
                payment_id=payment.id,
                provider=payment.provider,
                provider_payment_id=payment.provider_payment_id,
                amount_cents=amount,
                payment_amount_cents=payment.amount_cents,
            )
        )
        remaining -= amount
    return allocations


def check_reschedule_window(
    original_start: datetime,
    new_start: datetime,
    now: datetime,
    threshold_hours: float,
) -> None:
    """Both the current and the proposed start must be far enough ahead."""
    if hours_between(original_start, now) < threshold_hours:
        raise ConflictError(
            f"Appointments can only be rescheduled up to {threshold_hours:g}h before they start",
            reason="too_close_original",
        )
    if hours_between(new_start, now) < threshold_hours:
        raise ConflictError(
            f"The new date must be at least {threshold_hours:g}h from now",
            reason="too_close_new",
        )


# =========================================================================
# Persistence helpers
# =========================================================================


async def _get_active_service(db: AsyncSession, service_id: str) -> Service:
    service = await db.get(Service, service_id)
    if service is None or service.active is False:
        raise NotFoundError("Service", service_id, reason="service_not_found")
    return service


async def _get_owned_appointment(
    db: AsyncSession,
    appointment_id: str,
    customer_id: Optional[str],
    for_update: bool = False,
) -> Appointment:
    query = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    appointment = result.scalar_one_or_none()

    # Someone else's appointment looks exactly like a missing one
    if appointment is None or not appointment.customer_id or appointment.customer_id != customer_id:
        raise NotFoundError("Appointment", appointment_id, reason="appointment_not_found")
    return appointment


async def _branch_zone(db: AsyncSession, branch_id: str, config: SchedulingConfig):
    branch = await db.get(Branch, branch_id)
    return get_timezone(branch.timezone if branch else None, fallback=config.timezone)


# =========================================================================
# Operations
# =========================================================================


async def create_appointment(
    db: AsyncSession,
    customer_id: str,
    service_id: str,
    starts_at: datetime,
    staff_id: Optional[str] = None,
    service_type_id: Optional[str] = None,
    notes: Optional[str] = None,
    config: Optional[SchedulingConfig] = None,
) -> Appointment:
    """Book a pending appointment on a slot the availability engine still offers."""
    config = config or SchedulingConfig()
    starts_at = ensure_utc(starts_at)

    service = await _get_active_service(db, service_id)
    values, resolved_type_id = await resolve_service_values(
        db, service, service_type_id, config.default_buffer_min
    )
    if values.duration_min <= 0:
        raise BusinessRuleError("Service has no bookable duration", reason="invalid_duration")

    tz = await _branch_zone(db, service.branch_id, config)
    if staff_id:
        staff = await db.get(Staff, staff_id)
        if staff is None or staff.branch_id != service.branch_id or staff.active is False:
            raise NotFoundError("Staff", staff_id, reason="staff_not_found")
    else:
        staff_id = await select_staff_for_weekday(db, service.branch_id, local_weekday(starts_at, tz))
        if staff_id is None:
            raise ConflictError("No staff member works on that day", reason="no_staff_available")

    availability = await compute_available_slots(
        db,
        service.id,
        to_local(starts_at, tz).date(),
        staff_id=staff_id,
        config=config,
        service_type_id=resolved_type_id,
    )
    if starts_at not in availability.slots:
        raise ConflictError("The selected time is no longer available", reason="slot_unavailable")

    total_cents = values.price_cents
    deposit_cents = min(values.deposit_cents, total_cents)

    appointment = Appointment(
        branch_id=service.branch_id,
        customer_id=customer_id,
        staff_id=staff_id,
        service_id=service.id,
        service_type_id=resolved_type_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=values.duration_min),
        status=AppointmentStatus.pending.value,
        total_cents=total_cents,
        deposit_cents=deposit_cents,
        legacy_deposit_amount=Decimal(deposit_cents) / 100,
        notes=notes,
    )
    db.add(appointment)
    try:
        await db.commit()
    except IntegrityError:
        # Overlap exclusion constraint on PostgreSQL
        await db.rollback()
        raise ConflictError("The selected time is no longer available", reason="slot_unavailable")
    await db.refresh(appointment)

    logger.info(f"Appointment {appointment.id} booked for staff {staff_id} at {starts_at.isoformat()}")
    return appointment


async def cancel_appointment(
    db: AsyncSession,
    appointment_id: str,
    customer_id: Optional[str],
    now: Optional[datetime] = None,
    config: Optional[SchedulingConfig] = None,
    provider_lookup: ProviderLookup = get_payment_provider,
) -> CancellationResult:
    """Cancel an appointment and refund what the penalty rules allow.

    Each refund call is bounded by the provider timeout. A failed, timed out
    or rejected refund is logged and skipped; the appointment is canceled
    regardless.
    """
    config = config or SchedulingConfig()
    now = ensure_utc(now or datetime.now(timezone.utc))

    appointment = await _get_owned_appointment(db, appointment_id, customer_id, for_update=True)
    assert_transition(appointment.status, AppointmentStatus.canceled.value)

    within_penalty = is_within_penalty_window(ensure_utc(appointment.starts_at), now, config.lead_time_hours)
    deposit = resolve_deposit_cents(appointment.deposit_cents, appointment.legacy_deposit_amount)
    paid = (await get_paid_totals(db, [appointment.id])).get(appointment.id, 0)
    refund_cents = compute_refund_cents(deposit, paid, within_penalty)

    failed: list[str] = []
    if refund_cents > 0:
        result = await db.execute(
            select(Payment)
            .where(
                Payment.appointment_id == appointment.id,
                Payment.status == PaymentStatus.approved.value,
            )
            .order_by(Payment.created_at.asc(), Payment.id.asc())
        )
        payments = {p.id: p for p in result.scalars().all()}

        for allocation in allocate_refunds(list(payments.values()), refund_cents):
            if await _attempt_refund(allocation, provider_lookup, config.provider_timeout_seconds):
                payment = payments[allocation.payment_id]
                payment.status = (
                    PaymentStatus.refunded.value
                    if allocation.amount_cents >= allocation.payment_amount_cents
                    else PaymentStatus.partially_refunded.value
                )
            else:
                failed.append(allocation.payment_id)

    appointment.status = AppointmentStatus.canceled.value
    await db.commit()

    logger.info(
        f"Appointment {appointment.id} canceled: refund={refund_cents} "
        f"within_penalty={within_penalty} failed_refunds={len(failed)}"
    )
    return CancellationResult(appointment_id=appointment.id, refunded_cents=refund_cents, failed_payment_ids=failed)


async def _attempt_refund(
    allocation: RefundAllocation,
    provider_lookup: ProviderLookup,
    timeout_seconds: float,
) -> bool:
    provider = provider_lookup(allocation.provider)
    if provider is None or not allocation.provider_payment_id:
        logger.error(f"Cannot refund payment {allocation.payment_id}: no provider {allocation.provider!r}")
        return False

    try:
        result = await asyncio.wait_for(
            provider.refund(allocation.provider_payment_id, allocation.amount_cents),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error(f"Refund of payment {allocation.payment_id} timed out after {timeout_seconds}s")
        return False
    except Exception as e:
        logger.error(f"Refund of payment {allocation.payment_id} failed: {e}")
        return False

    if not result.success:
        logger.error(f"Refund of payment {allocation.payment_id} rejected: {result.error_message}")
        return False
    return True


async def reschedule_appointment(
    db: AsyncSession,
    appointment_id: str,
    customer_id: Optional[str],
    new_starts_at: datetime,
    now: Optional[datetime] = None,
    config: Optional[SchedulingConfig] = None,
) -> RescheduleResult:
    config = config or SchedulingConfig()
    now = ensure_utc(now or datetime.now(timezone.utc))
    new_starts_at = ensure_utc(new_starts_at)

    appointment = await _get_owned_appointment(db, appointment_id, customer_id, for_update=True)
    if appointment.status != AppointmentStatus.pending.value:
        raise ConflictError("Only pending appointments can be rescheduled", reason="not_pending")

    check_reschedule_window(ensure_utc(appointment.starts_at), new_starts_at, now, config.lead_time_hours)

    service = await _get_active_service(db, appointment.service_id)
    values, _ = await resolve_service_values(
        db, service, appointment.service_type_id, config.default_buffer_min
    )
    duration = timedelta(minutes=values.duration_min)
    if values.duration_min <= 0:
        duration = ensure_utc(appointment.ends_at) - ensure_utc(appointment.starts_at)

    if appointment.staff_id:
        need_minutes = int(duration.total_seconds() // 60) + max(0, values.buffer_min)
        if not await is_slot_available(
            db, appointment.staff_id, new_starts_at, need_minutes, exclude_appointment_id=appointment.id
        ):
            raise ConflictError("The selected time is no longer available", reason="slot_unavailable")

    appointment.starts_at = new_starts_at
    appointment.ends_at = new_starts_at + duration
    try:
        await db.commit()
    except IntegrityError:
        # Overlap exclusion constraint on PostgreSQL
        await db.rollback()
        raise ConflictError("The selected time is no longer available", reason="slot_unavailable")

    logger.info(f"Appointment {appointment.id} rescheduled to {new_starts_at.isoformat()}")
    return RescheduleResult(starts_at=new_starts_at, ends_at=new_starts_at + duration)


async def list_upcoming_appointments(
    db: AsyncSession,
    branch_id: str,
    now: Optional[datetime] = None,
    days: int = 60,
) -> list[SnapshotAppointment]:
    """Occupying appointments of a branch over the snapshot horizon."""
    now = ensure_utc(now or datetime.now(timezone.utc))
    # One day of slack on both sides; the builder keys days in local time
    window_start = now - timedelta(days=1)
    window_end = now + timedelta(days=max(1, days) + 1)

    result = await db.execute(
        select(Appointment, Service.buffer_min)
        .outerjoin(Service, Service.id == Appointment.service_id)
        .where(
            Appointment.branch_id == branch_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.starts_at >= window_start,
            Appointment.starts_at < window_end,
        )
        .order_by(Appointment.starts_at.asc())
    )
    return [
        SnapshotAppointment(
            id=appointment.id,
            starts_at=ensure_utc(appointment.starts_at),
            ends_at=ensure_utc(appointment.ends_at) if appointment.ends_at else None,
            status=appointment.status,
            customer_id=appointment.customer_id,
            services={"buffer_min": buffer_min},
        )
        for appointment, buffer_min in result.all()
    ]
