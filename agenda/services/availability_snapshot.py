"""
Calendar availability snapshot.

Builds the advisory per-day view the booking calendar renders: which days
are free, partially booked, fully booked or hold one of the caller's own
bookings, plus the booked time labels and busy intervals of each day. It
does not replace the per-slot check of the availability engine.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from agenda.models.appointment import ACTIVE_STATUSES
from agenda.services.payment_totals import parse_number
from agenda.utils.timezone import (
    DEFAULT_TIMEZONE,
    enumerate_dates,
    ensure_utc,
    get_timezone,
    local_date_label,
    local_time_label,
    local_today,
    parse_time_of_day,
)

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60


def make_slots(start: str = "09:00", end: str = "18:00", step_minutes: int = 30) -> list[str]:
    """Time labels from ``start`` to ``end`` inclusive."""
    step = step_minutes or 30
    cursor = datetime.combine(date(2000, 1, 1), parse_time_of_day(start))
    limit = datetime.combine(date(2000, 1, 1), parse_time_of_day(end))
    labels = []
    while cursor <= limit:
        labels.append(cursor.strftime("%H:%M"))
        cursor += timedelta(minutes=step)
    return labels


DEFAULT_SLOT_TEMPLATE = make_slots("09:00", "18:00", 30)


class SnapshotAppointment(BaseModel):
    """An upcoming appointment as fed to the snapshot builder.

    ``services`` may arrive as a single object or a list with one object;
    it is reduced to ``buffer_min`` on validation.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    starts_at: datetime
    scheduled_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    status: str
    customer_id: Optional[str] = None
    buffer_min: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_services(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "services" not in data:
            return data
        data = dict(data)
        services = data.pop("services")
        entries = services if isinstance(services, list) else [services] if services else []
        if data.get("buffer_min") is None:
            for entry in entries:
                value = entry.get("buffer_min") if isinstance(entry, dict) else getattr(entry, "buffer_min", None)
                normalized = parse_number(value)
                if normalized is not None:
                    data["buffer_min"] = normalized
                    break
        return data


@dataclass
class SnapshotOptions:
    fallback_buffer_minutes: float = 15
    days: int = 60
    slot_template: list[str] = field(default_factory=lambda: list(DEFAULT_SLOT_TEMPLATE))
    timezone: str = DEFAULT_TIMEZONE
    today: Optional[date] = None


@dataclass(frozen=True)
class SnapshotInterval:
    start: datetime
    end: datetime


@dataclass
class AvailabilityData:
    available_days: set[str] = field(default_factory=set)
    partially_booked_days: set[str] = field(default_factory=set)
    booked_days: set[str] = field(default_factory=set)
    my_days: set[str] = field(default_factory=set)
    day_slots: dict[str, list[str]] = field(default_factory=dict)
    booked_slots: dict[str, list[str]] = field(default_factory=dict)
    busy_intervals: dict[str, list[SnapshotInterval]] = field(default_factory=dict)


@dataclass
class _DayEntry:
    times: set[str] = field(default_factory=set)
    my_times: set[str] = field(default_factory=set)
    intervals: list[SnapshotInterval] = field(default_factory=list)


def _buffer_minutes(appointment: SnapshotAppointment, fallback: float) -> float:
    if appointment.buffer_min is not None:
        return max(0, appointment.buffer_min)
    return max(0, fallback)


def build_availability_data(
    appointments: list[SnapshotAppointment],
    user_id: Optional[str],
    options: Optional[SnapshotOptions] = None,
) -> AvailabilityData:
    """Classify every day of the horizon starting today in the options' timezone.

    Only pending, reserved and confirmed appointments occupy a day. A day
    holding one of ``user_id``'s bookings lands in ``my_days`` as well as in
    its regular classification.
    """
    options = options or SnapshotOptions()
    tz = get_timezone(options.timezone)
    fallback_buffer = max(0, options.fallback_buffer_minutes)
    total_days = max(1, options.days)
    template = list(options.slot_template)
    today = options.today or local_today(tz)

    per_day: dict[str, _DayEntry] = {}
    for appointment in appointments:
        if appointment.status not in ACTIVE_STATUSES:
            continue

        start = ensure_utc(appointment.scheduled_at or appointment.starts_at)
        end = ensure_utc(appointment.ends_at) if appointment.ends_at else start + timedelta(minutes=DEFAULT_DURATION_MINUTES)
        end_with_buffer = end + timedelta(minutes=_buffer_minutes(appointment, fallback_buffer))

        day_key = local_date_label(start, tz)
        label = local_time_label(start, tz)

        entry = per_day.setdefault(day_key, _DayEntry())
        entry.times.add(label)
        entry.intervals.append(SnapshotInterval(start=start, end=end_with_buffer))
        if user_id and appointment.customer_id == user_id:
            entry.my_times.add(label)

    data = AvailabilityData()
    for day in enumerate_dates(today, total_days):
        day_key = day.isoformat()
        data.day_slots[day_key] = list(template)

        entry = per_day.get(day_key)
        if entry is None or not entry.times:
            data.available_days.add(day_key)
            continue

        data.booked_slots[day_key] = sorted(entry.times)
        data.busy_intervals[day_key] = sorted(entry.intervals, key=lambda interval: interval.start)

        if entry.my_times:
            data.my_days.add(day_key)

        if len(entry.times) >= len(template):
            data.booked_days.add(day_key)
        else:
            data.partially_booked_days.add(day_key)

    return data
