"""
Appointment maintenance sweep.

Two independent passes, each bounded to one batch:

- auto-complete: active appointments whose start is older than the
  completion grace period become ``completed``
- auto-cancel: ``pending`` holds older than the hold grace period whose
  approved payments do not cover the required deposit become ``canceled``

Callers wanting full convergence repeat the sweep until both counts are 0.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from agenda.services.payment_totals import get_paid_totals, parse_number, resolve_deposit_cents, round_half_up
from agenda.utils.timezone import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAppointment:
    id: str
    deposit_cents: Any = None
    legacy_deposit_amount: Any = None


@dataclass(frozen=True)
class PaymentTotal:
    appointment_id: str
    paid_cents: Any = None


@dataclass
class MaintenanceResult:
    completed_count: int = 0
    canceled_count: int = 0

    @property
    def total(self) -> int:
        return self.completed_count + self.canceled_count


def determine_pending_appointments_to_cancel(
    appointments: Iterable[PendingAppointment],
    totals: Iterable[PaymentTotal],
) -> list[PendingAppointment]:
    """Pending holds that should be released.

    Totals that are not numbers are ignored and negative ones count as 0;
    a later total for the same appointment replaces an earlier one. An
    appointment without a resolvable deposit is always released.
    """
    paid_by_appointment: dict[str, int] = {}
    for total in totals or []:
        paid = parse_number(total.paid_cents)
        if paid is not None:
            paid_by_appointment[total.appointment_id] = max(0, round_half_up(paid))

    to_cancel = []
    for appointment in appointments:
        deposit = resolve_deposit_cents(appointment.deposit_cents, appointment.legacy_deposit_amount)
        if deposit <= 0:
            to_cancel.append(appointment)
            continue
        if paid_by_appointment.get(appointment.id, 0) < deposit:
            to_cancel.append(appointment)
    return to_cancel


async def finalize_past_appointments(
    db: AsyncSession,
    now: datetime,
    grace_hours: float = 3,
    batch_size: int = 200,
) -> int:
    threshold = ensure_utc(now) - timedelta(hours=grace_hours)
    result = await db.execute(
        select(Appointment.id)
        .where(
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.starts_at <= threshold,
        )
        .order_by(Appointment.starts_at.asc())
        .limit(batch_size)
    )
    ids = list(result.scalars().all())
    if not ids:
        return 0

    await db.execute(
        update(Appointment)
        .where(Appointment.id.in_(ids), Appointment.status.in_(ACTIVE_STATUSES))
        .values(status=AppointmentStatus.completed.value)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return len(ids)


async def cancel_expired_pending_appointments(
    db: AsyncSession,
    now: datetime,
    grace_hours: float = 2,
    batch_size: int = 200,
) -> int:
    threshold = ensure_utc(now) - timedelta(hours=grace_hours)
    result = await db.execute(
        select(Appointment.id, Appointment.deposit_cents, Appointment.legacy_deposit_amount)
        .where(
            Appointment.status == AppointmentStatus.pending.value,
            Appointment.created_at <= threshold,
        )
        .order_by(Appointment.created_at.asc())
        .limit(batch_size)
    )
    pending = [
        PendingAppointment(id=row.id, deposit_cents=row.deposit_cents, legacy_deposit_amount=row.legacy_deposit_amount)
        for row in result.all()
    ]
    if not pending:
        return 0

    paid = await get_paid_totals(db, [a.id for a in pending])
    totals = [PaymentTotal(appointment_id=k, paid_cents=v) for k, v in paid.items()]
    to_cancel = determine_pending_appointments_to_cancel(pending, totals)
    if not to_cancel:
        return 0

    await db.execute(
        update(Appointment)
        .where(
            Appointment.id.in_([a.id for a in to_cancel]),
            Appointment.status == AppointmentStatus.pending.value,
        )
        .values(status=AppointmentStatus.canceled.value)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return len(to_cancel)


async def run_maintenance_sweep(
    db: AsyncSession,
    now: Optional[datetime] = None,
    config: Optional[SchedulingConfig] = None,
) -> MaintenanceResult:
    """One bounded pass of both maintenance jobs."""
    config = config or SchedulingConfig()
    now = ensure_utc(now or datetime.now(timezone.utc))

    completed = await finalize_past_appointments(db, now, config.complete_grace_hours, config.batch_size)
    canceled = await cancel_expired_pending_appointments(
        db, now, config.pending_hold_grace_hours, config.batch_size
    )

    result = MaintenanceResult(completed_count=completed, canceled_count=canceled)
    if result.total:
        logger.info(f"Maintenance sweep: completed={completed} canceled={canceled}")
    return result
