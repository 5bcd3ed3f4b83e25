"""
Tests for the availability engine.

Slot generation is cross-checked against a brute-force minute-by-minute
occupancy grid.
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.models.branch import Blackout, StaffHours
from agenda.services.availability_service import (
    BusyInterval,
    compute_available_slots,
    generate_slots,
    intervals_overlap,
    is_slot_available,
    select_staff_for_weekday,
)

from factories import AppointmentFactory, StaffFactory, seed_booking

# Monday; Sao Paulo is UTC-3 all year
DAY = date(2030, 3, 4)
OPEN_UTC = datetime(2030, 3, 4, 12, 0, tzinfo=timezone.utc)
CONFIG = SchedulingConfig(timezone="America/Sao_Paulo", default_buffer_min=15)


def at(hour: int, minute: int = 0) -> datetime:
    """UTC instant for a Sao Paulo wall-clock time on DAY."""
    return datetime(2030, 3, 4, hour + 3, minute, tzinfo=timezone.utc)


def brute_force_slots(day_start, day_end, need_minutes, busy, step=15):
    """Minute grid: a start is free when no minute of [start, start+need) is busy."""
    total = int((day_end - day_start).total_seconds() // 60)
    occupied = [False] * total
    for interval in busy:
        first = int((interval.start - day_start).total_seconds() // 60)
        last = int((interval.end - day_start).total_seconds() // 60)
        for minute in range(max(0, first), min(total, last)):
            occupied[minute] = True
    return [
        day_start + timedelta(minutes=offset)
        for offset in range(0, total - need_minutes + 1, step)
        if not any(occupied[offset:offset + need_minutes])
    ]


class TestGenerateSlots:
    def test_empty_day(self):
        slots = generate_slots(OPEN_UTC, OPEN_UTC + timedelta(hours=9), 75, [])
        assert len(slots) == 32
        assert slots[0] == OPEN_UTC
        assert slots[-1] == OPEN_UTC + timedelta(minutes=465)

    def test_zero_need_yields_nothing(self):
        assert generate_slots(OPEN_UTC, OPEN_UTC + timedelta(hours=9), 0, []) == []

    def test_back_to_back_boundary_is_free(self):
        busy = [BusyInterval(OPEN_UTC, OPEN_UTC + timedelta(minutes=60))]
        slots = generate_slots(OPEN_UTC, OPEN_UTC + timedelta(hours=3), 60, busy)
        assert OPEN_UTC + timedelta(minutes=60) in slots
        assert OPEN_UTC + timedelta(minutes=45) not in slots

    def test_half_open_overlap(self):
        busy = BusyInterval(OPEN_UTC, OPEN_UTC + timedelta(hours=1))
        assert not intervals_overlap(OPEN_UTC - timedelta(hours=1), OPEN_UTC, busy)
        assert intervals_overlap(OPEN_UTC - timedelta(minutes=1), OPEN_UTC + timedelta(minutes=1), busy)

    @pytest.mark.parametrize("need", [15, 40, 75, 120])
    def test_matches_brute_force_grid(self, need):
        day_end = OPEN_UTC + timedelta(hours=9)
        busy = [
            BusyInterval(OPEN_UTC + timedelta(minutes=50), OPEN_UTC + timedelta(minutes=110)),
            BusyInterval(OPEN_UTC + timedelta(minutes=200), OPEN_UTC + timedelta(minutes=215), "blackout"),
            BusyInterval(OPEN_UTC + timedelta(minutes=400), OPEN_UTC + timedelta(minutes=600)),
            BusyInterval(OPEN_UTC - timedelta(minutes=30), OPEN_UTC + timedelta(minutes=10)),
        ]
        assert generate_slots(OPEN_UTC, day_end, need, busy) == brute_force_slots(OPEN_UTC, day_end, need, busy)


class TestComputeAvailableSlots:
    @pytest.mark.asyncio
    async def test_open_day_with_buffer(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)

        assert result.staff_id == setup["staff"].id
        assert result.slots[0] == at(9)
        # 60 min + 15 min buffer must end by 18:00
        assert result.slots[-1] == at(16, 45)
        assert len(result.slots) == 32

    @pytest.mark.asyncio
    async def test_existing_appointment_blocks_candidates(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        test_db.add(AppointmentFactory(
            branch_id=setup["branch"].id,
            staff_id=setup["staff"].id,
            service_id=setup["service"].id,
            starts_at=at(10),
            ends_at=at(11),
            status="confirmed",
        ))
        await test_db.commit()

        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        # Candidates carry the buffer: 09:00 would run until 10:15
        assert at(9) not in result.slots
        assert at(9, 45) not in result.slots
        assert at(10, 45) not in result.slots
        # Busy row is taken without buffer, so right after it is free
        assert at(11) in result.slots

    @pytest.mark.asyncio
    async def test_canceled_appointments_do_not_block(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        test_db.add(AppointmentFactory(
            branch_id=setup["branch"].id,
            staff_id=setup["staff"].id,
            starts_at=at(10),
            ends_at=at(11),
            status="canceled",
        ))
        await test_db.commit()

        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert at(10) in result.slots

    @pytest.mark.asyncio
    async def test_blackout_blocks(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        test_db.add(Blackout(staff_id=setup["staff"].id, starts_at=at(12), ends_at=at(14), reason="Almoço"))
        await test_db.commit()

        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert at(12) not in result.slots
        assert at(13, 45) not in result.slots
        assert at(14) in result.slots
        assert at(10, 45) in result.slots  # ends exactly at 12:00

    @pytest.mark.asyncio
    async def test_closed_day_is_empty(self, test_db: AsyncSession):
        # Sunday only
        setup = await seed_booking(test_db, weekdays=(0,))
        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert result.slots == []

    @pytest.mark.asyncio
    async def test_staff_hours_narrow_the_window(self, test_db: AsyncSession):
        setup = await seed_booking(test_db, staff_hours=(time(13, 0), time(20, 0)))
        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert result.slots[0] == at(13)
        assert result.slots[-1] == at(16, 45)

    @pytest.mark.asyncio
    async def test_disjoint_hours_are_empty(self, test_db: AsyncSession):
        setup = await seed_booking(test_db, staff_hours=(time(19, 0), time(22, 0)))
        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert result.slots == []

    @pytest.mark.asyncio
    async def test_no_staff_is_empty(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        setup["staff"].active = False
        await test_db.commit()

        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert result.staff_id is None
        assert result.slots == []

    @pytest.mark.asyncio
    async def test_unknown_service_is_empty(self, test_db: AsyncSession):
        result = await compute_available_slots(test_db, "missing", DAY, config=CONFIG)
        assert result.slots == []

    @pytest.mark.asyncio
    async def test_zero_duration_is_empty(self, test_db: AsyncSession):
        setup = await seed_booking(test_db, duration_min=0)
        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        assert result.slots == []

    @pytest.mark.asyncio
    async def test_explicit_staff_without_hours_is_empty(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        other = StaffFactory(branch_id=setup["branch"].id)
        test_db.add(other)
        await test_db.commit()

        result = await compute_available_slots(test_db, setup["service"].id, DAY, staff_id=other.id, config=CONFIG)
        assert result.staff_id == other.id
        assert result.slots == []

    @pytest.mark.asyncio
    async def test_matches_brute_force_with_rows(self, test_db: AsyncSession):
        setup = await seed_booking(test_db, duration_min=50, buffer_min=10)
        rows = [(at(9, 20), at(10, 5)), (at(13), at(13, 30)), (at(17, 10), at(18, 40))]
        for start, end in rows:
            test_db.add(AppointmentFactory(
                branch_id=setup["branch"].id, staff_id=setup["staff"].id, starts_at=start, ends_at=end,
            ))
        await test_db.commit()

        result = await compute_available_slots(test_db, setup["service"].id, DAY, config=CONFIG)
        expected = brute_force_slots(at(9), at(18), 60, [BusyInterval(s, e) for s, e in rows])
        assert result.slots == expected


class TestStaffSelection:
    @pytest.mark.asyncio
    async def test_lowest_id_working_staff(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        other = StaffFactory(branch_id=setup["branch"].id, id="00000000-0000-0000-0000-000000000000")
        test_db.add(other)
        await test_db.flush()
        test_db.add(StaffHours(staff_id=other.id, weekday=1, start_time=time(9), end_time=time(12)))
        await test_db.commit()

        assert await select_staff_for_weekday(test_db, setup["branch"].id, 1) == other.id
        # Other weekdays only have the seeded staff member
        assert await select_staff_for_weekday(test_db, setup["branch"].id, 2) == setup["staff"].id


class TestIsSlotAvailable:
    @pytest.mark.asyncio
    async def test_single_candidate(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        appointment = AppointmentFactory(
            branch_id=setup["branch"].id, staff_id=setup["staff"].id, starts_at=at(10), ends_at=at(11),
        )
        test_db.add(appointment)
        await test_db.commit()

        staff_id = setup["staff"].id
        assert not await is_slot_available(test_db, staff_id, at(10, 30), 60)
        assert await is_slot_available(test_db, staff_id, at(11), 60)
        assert await is_slot_available(test_db, staff_id, at(9), 60)
        assert await is_slot_available(test_db, staff_id, at(10), 60, exclude_appointment_id=appointment.id)
