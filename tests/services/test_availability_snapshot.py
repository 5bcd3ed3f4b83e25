"""
Tests for the calendar availability snapshot.
"""

from datetime import date, datetime, timedelta, timezone

from agenda.services.availability_snapshot import (
    SnapshotAppointment,
    SnapshotOptions,
    build_availability_data,
    make_slots,
)

TODAY = date(2030, 3, 4)


def appt(id, local_hour, day=TODAY, minute=0, status="pending", customer_id=None, **extra):
    # Sao Paulo is UTC-3
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc) + timedelta(hours=local_hour + 3, minutes=minute)
    return SnapshotAppointment(id=id, starts_at=start, status=status, customer_id=customer_id, **extra)


def options(**overrides):
    values = {"days": 3, "today": TODAY, "timezone": "America/Sao_Paulo", "slot_template": make_slots("09:00", "10:00", 30)}
    values.update(overrides)
    return SnapshotOptions(**values)


class TestMakeSlots:
    def test_default_template(self):
        slots = make_slots()
        assert slots[0] == "09:00"
        assert slots[-1] == "18:00"
        assert len(slots) == 19

    def test_custom_step(self):
        assert make_slots("08:00", "09:00", 20) == ["08:00", "08:20", "08:40", "09:00"]


class TestSnapshotAppointment:
    def test_services_object_or_list(self):
        start = datetime(2030, 3, 4, 12, tzinfo=timezone.utc)
        single = SnapshotAppointment(id="a", starts_at=start, status="pending", services={"buffer_min": 20})
        listed = SnapshotAppointment(id="b", starts_at=start, status="pending", services=[{"buffer_min": "5"}])
        empty = SnapshotAppointment(id="c", starts_at=start, status="pending", services=[])
        assert single.buffer_min == 20
        assert listed.buffer_min == 5
        assert empty.buffer_min is None


class TestBuildAvailabilityData:
    def test_classifies_days(self):
        appointments = [
            appt("1", 9),
            appt("2", 9, day=TODAY + timedelta(days=1)),
            appt("3", 9, minute=30, day=TODAY + timedelta(days=1)),
            appt("4", 10, day=TODAY + timedelta(days=1)),
        ]
        data = build_availability_data(appointments, None, options())

        assert data.partially_booked_days == {"2030-03-04"}
        assert data.booked_days == {"2030-03-05"}
        assert data.available_days == {"2030-03-06"}
        assert data.booked_slots["2030-03-05"] == ["09:00", "09:30", "10:00"]
        assert set(data.day_slots) == {"2030-03-04", "2030-03-05", "2030-03-06"}

    def test_canceled_and_completed_are_ignored(self):
        appointments = [appt("1", 9, status="canceled"), appt("2", 9, minute=30, status="completed")]
        data = build_availability_data(appointments, None, options())
        assert "2030-03-04" in data.available_days
        assert "2030-03-04" not in data.booked_slots

    def test_my_days_also_keep_their_classification(self):
        data = build_availability_data([appt("1", 9, customer_id="me")], "me", options())
        assert data.my_days == {"2030-03-04"}
        assert data.partially_booked_days == {"2030-03-04"}

    def test_other_customers_are_not_mine(self):
        data = build_availability_data([appt("1", 9, customer_id="other")], "me", options())
        assert data.my_days == set()

    def test_busy_interval_adds_buffer(self):
        explicit = appt("1", 9, buffer_min=10)
        fallback = appt("2", 11)
        data = build_availability_data([explicit, fallback], None, options(fallback_buffer_minutes=15))

        first, second = data.busy_intervals["2030-03-04"]
        # No end time: 60 minutes are assumed
        assert first.end - first.start == timedelta(minutes=70)
        assert second.end - second.start == timedelta(minutes=75)

    def test_day_key_uses_local_date(self):
        # 21:30 in Sao Paulo is already the next day in UTC
        late = appt("1", 21, minute=30)
        assert late.starts_at.date() == date(2030, 3, 5)
        data = build_availability_data([late], None, options())
        assert data.booked_slots["2030-03-04"] == ["21:30"]

    def test_horizon_excludes_far_appointments(self):
        data = build_availability_data([appt("1", 9, day=TODAY + timedelta(days=10))], None, options())
        assert data.available_days == {"2030-03-04", "2030-03-05", "2030-03-06"}
