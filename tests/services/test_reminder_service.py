"""
Tests for default reminder enqueueing and the status state machine.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.exceptions import ConflictError
from agenda.models.payment import Reminder
from agenda.services.appointment_lifecycle import assert_transition, can_transition
from agenda.services.reminder_service import enqueue_default_reminders

from factories import AppointmentFactory, seed_booking

# 10:00 in Sao Paulo
STARTS_AT = datetime(2030, 3, 4, 13, 0, tzinfo=timezone.utc)


class TestEnqueueDefaultReminders:
    @pytest.mark.asyncio
    async def test_queues_24h_and_2h(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        setup["customer"].full_name = "Maria Souza"
        appointment = AppointmentFactory(
            branch_id=setup["branch"].id, customer_id=setup["customer"].id, starts_at=STARTS_AT,
        )
        test_db.add(appointment)
        await test_db.commit()

        reminders = await enqueue_default_reminders(test_db, appointment.id)

        assert [r.template for r in reminders] == ["reminder_24h", "reminder_2h"]
        assert reminders[0].scheduled_at == STARTS_AT - timedelta(hours=24)
        assert reminders[1].scheduled_at == STARTS_AT - timedelta(hours=2)
        assert "Maria" in reminders[0].message
        assert "10:00" in reminders[1].message
        assert all(r.to_address == setup["customer"].whatsapp for r in reminders)

        stored = (await test_db.execute(select(Reminder))).scalars().all()
        assert len(stored) == 2

    @pytest.mark.asyncio
    async def test_no_whatsapp_no_reminders(self, test_db: AsyncSession):
        setup = await seed_booking(test_db)
        setup["customer"].whatsapp = None
        appointment = AppointmentFactory(branch_id=setup["branch"].id, customer_id=setup["customer"].id)
        test_db.add(appointment)
        await test_db.commit()

        assert await enqueue_default_reminders(test_db, appointment.id) == []

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, test_db: AsyncSession):
        assert await enqueue_default_reminders(test_db, "missing") == []


class TestLifecycle:
    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            ("pending", "confirmed", True),
            ("reserved", "confirmed", True),
            ("confirmed", "completed", True),
            ("confirmed", "pending", False),
            ("canceled", "confirmed", False),
            ("completed", "canceled", False),
            ("bogus", "canceled", False),
        ],
    )
    def test_transitions(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_assert_transition_reason(self):
        with pytest.raises(ConflictError) as exc:
            assert_transition("canceled", "confirmed")
        assert exc.value.reason == "invalid_transition"
