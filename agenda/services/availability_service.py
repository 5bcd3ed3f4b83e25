"""
Availability engine.

Computes the bookable slot starts of one staff member on one local calendar
day: the intersection of the branch's business hours and the staff member's
working hours, minus every busy interval (non-canceled appointments and
blackouts). Candidates carry the service buffer; busy rows are taken as-is.

Every "nothing configured" situation (closed branch, no staff, no staff
hours, zero duration) yields an empty result rather than an error.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.models.branch import Branch, Blackout, BusinessHours, Staff, StaffHours
from agenda.models.service import Service
from agenda.services.pricing import resolve_service_values
from agenda.utils.timezone import date_weekday, ensure_utc, get_timezone, local_to_instant

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 15


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime
    source: str = "appointment"  # appointment, blackout


@dataclass
class AvailabilityResult:
    staff_id: Optional[str] = None
    slots: list[datetime] = field(default_factory=list)


def working_window(
    day: date,
    tz: ZoneInfo,
    open_time: time,
    close_time: time,
    staff_start: time,
    staff_end: time,
) -> Optional[tuple[datetime, datetime]]:
    """Intersect business and staff hours into absolute UTC bounds.

    Returns None when the intersection is empty. Windows crossing midnight
    are not supported.
    """
    day_start = max(local_to_instant(day, open_time, tz), local_to_instant(day, staff_start, tz))
    day_end = min(local_to_instant(day, close_time, tz), local_to_instant(day, staff_end, tz))
    if day_end <= day_start:
        return None
    return day_start, day_end


def intervals_overlap(start: datetime, end: datetime, busy: BusyInterval) -> bool:
    """Half-open overlap: touching endpoints do not count."""
    return not (end <= busy.start or start >= busy.end)


def generate_slots(
    day_start: datetime,
    day_end: datetime,
    need_minutes: int,
    busy: Sequence[BusyInterval],
    step_minutes: int = SLOT_STEP_MINUTES,
) -> list[datetime]:
    """Walk the window at a fixed step and keep candidates clear of every busy interval."""
    if need_minutes <= 0 or step_minutes <= 0:
        return []

    need = timedelta(minutes=need_minutes)
    step = timedelta(minutes=step_minutes)
    slots = []
    candidate = day_start
    while candidate + need <= day_end:
        candidate_end = candidate + need
        if not any(intervals_overlap(candidate, candidate_end, b) for b in busy):
            slots.append(candidate)
        candidate += step
    return slots


async def select_staff_for_weekday(db: AsyncSession, branch_id: str, weekday: int) -> Optional[str]:
    """Lowest-id active staff member of the branch who works on ``weekday``."""
    result = await db.execute(
        select(Staff.id)
        .join(StaffHours, StaffHours.staff_id == Staff.id)
        .where(
            Staff.branch_id == branch_id,
            Staff.active.is_(True),
            StaffHours.weekday == weekday,
        )
        .order_by(Staff.id.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_busy_intervals(
    db: AsyncSession,
    staff_id: str,
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_id: Optional[str] = None,
) -> list[BusyInterval]:
    """Non-canceled appointments and blackouts intersecting the window."""
    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)

    appointment_query = select(Appointment.starts_at, Appointment.ends_at).where(
        and_(
            Appointment.staff_id == staff_id,
            Appointment.status != AppointmentStatus.canceled.value,
            Appointment.starts_at < window_end,
            Appointment.ends_at > window_start,
        )
    )
    if exclude_appointment_id:
        appointment_query = appointment_query.where(Appointment.id != exclude_appointment_id)

    blackout_query = select(Blackout.starts_at, Blackout.ends_at).where(
        and_(
            Blackout.staff_id == staff_id,
            Blackout.starts_at < window_end,
            Blackout.ends_at > window_start,
        )
    )

    busy = [
        BusyInterval(ensure_utc(row.starts_at), ensure_utc(row.ends_at), "appointment")
        for row in (await db.execute(appointment_query)).all()
    ]
    busy.extend(
        BusyInterval(ensure_utc(row.starts_at), ensure_utc(row.ends_at), "blackout")
        for row in (await db.execute(blackout_query)).all()
    )
    busy.sort(key=lambda b: b.start)
    return busy


async def _branch_timezone(db: AsyncSession, branch_id: str, config: SchedulingConfig) -> ZoneInfo:
    result = await db.execute(select(Branch.timezone).where(Branch.id == branch_id))
    return get_timezone(result.scalar_one_or_none(), fallback=config.timezone)


async def _hours_for(db: AsyncSession, model, owner_column, owner_id: str, weekday: int):
    result = await db.execute(
        select(model).where(owner_column == owner_id, model.weekday == weekday)
    )
    return result.scalars().first()


async def compute_available_slots(
    db: AsyncSession,
    service_id: str,
    target_date: date,
    staff_id: Optional[str] = None,
    config: Optional[SchedulingConfig] = None,
    service_type_id: Optional[str] = None,
    exclude_appointment_id: Optional[str] = None,
) -> AvailabilityResult:
    """Available slot starts for a service on a local calendar date.

    Returns the staff member used (auto-selected when not given) and the
    ascending list of UTC slot starts. An unknown service also yields an
    empty result; routes check existence before calling.
    """
    config = config or SchedulingConfig()

    service = await db.get(Service, service_id)
    if service is None:
        logger.debug(f"Availability requested for unknown service {service_id}")
        return AvailabilityResult(staff_id=staff_id)

    values, _ = await resolve_service_values(db, service, service_type_id, config.default_buffer_min)
    if values.duration_min <= 0:
        return AvailabilityResult(staff_id=staff_id)
    need_minutes = values.duration_min + values.buffer_min

    tz = await _branch_timezone(db, service.branch_id, config)
    weekday = date_weekday(target_date)

    business_hours = await _hours_for(db, BusinessHours, BusinessHours.branch_id, service.branch_id, weekday)
    if business_hours is None:
        return AvailabilityResult(staff_id=staff_id)

    if not staff_id:
        staff_id = await select_staff_for_weekday(db, service.branch_id, weekday)
        if staff_id is None:
            return AvailabilityResult()

    staff_hours = await _hours_for(db, StaffHours, StaffHours.staff_id, staff_id, weekday)
    if staff_hours is None:
        return AvailabilityResult(staff_id=staff_id)

    window = working_window(
        target_date,
        tz,
        business_hours.open_time,
        business_hours.close_time,
        staff_hours.start_time,
        staff_hours.end_time,
    )
    if window is None:
        return AvailabilityResult(staff_id=staff_id)
    day_start, day_end = window

    busy = await load_busy_intervals(db, staff_id, day_start, day_end, exclude_appointment_id)
    slots = generate_slots(day_start, day_end, need_minutes, busy)
    return AvailabilityResult(staff_id=staff_id, slots=slots)


async def is_slot_available(
    db: AsyncSession,
    staff_id: str,
    starts_at: datetime,
    need_minutes: int,
    exclude_appointment_id: Optional[str] = None,
) -> bool:
    """Single-candidate version of the slot check, used right before insert."""
    if need_minutes <= 0:
        return False
    starts_at = ensure_utc(starts_at)
    ends_at = starts_at + timedelta(minutes=need_minutes)
    busy = await load_busy_intervals(db, staff_id, starts_at, ends_at, exclude_appointment_id)
    return not any(intervals_overlap(starts_at, ends_at, b) for b in busy)
