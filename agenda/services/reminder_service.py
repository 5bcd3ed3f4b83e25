"""
Default reminder enqueueing.

Confirmed appointments get two WhatsApp reminders, 24h and 2h before the
start. Rows are only queued here; delivery is handled elsewhere.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.models.appointment import Appointment, Customer
from agenda.models.branch import Branch
from agenda.models.payment import Reminder
from agenda.utils.timezone import ensure_utc, get_timezone, local_time_label

logger = logging.getLogger(__name__)

REMINDER_TEMPLATES = (
    (
        "reminder_24h",
        timedelta(hours=24),
        "Oi {first_name}! Lembrete: seu horário é amanhã às {time}. Qualquer imprevisto, avise por aqui.",
    ),
    (
        "reminder_2h",
        timedelta(hours=2),
        "É hoje! Seu horário é às {time}. Qualquer atraso avise por aqui. Até já!",
    ),
)


async def enqueue_default_reminders(
    db: AsyncSession,
    appointment_id: str,
    config: Optional[SchedulingConfig] = None,
) -> list[Reminder]:
    """Queue the default reminders; nothing happens without a WhatsApp number."""
    config = config or SchedulingConfig()

    result = await db.execute(
        select(Appointment, Customer, Branch.timezone)
        .join(Customer, Customer.id == Appointment.customer_id)
        .outerjoin(Branch, Branch.id == Appointment.branch_id)
        .where(Appointment.id == appointment_id)
    )
    row = result.first()
    if row is None:
        logger.warning(f"No appointment/customer for reminders: {appointment_id}")
        return []

    appointment, customer, branch_timezone = row
    if not customer.whatsapp:
        return []

    starts_at = ensure_utc(appointment.starts_at)
    tz = get_timezone(branch_timezone, fallback=config.timezone)
    first_name = (customer.full_name or "").split(" ")[0]
    time_label = local_time_label(starts_at, tz)

    reminders = [
        Reminder(
            appointment_id=appointment.id,
            channel="whatsapp",
            to_address=customer.whatsapp,
            template=template,
            message=message.format(first_name=first_name, time=time_label),
            scheduled_at=starts_at - lead,
            status="pending",
        )
        for template, lead, message in REMINDER_TEMPLATES
    ]
    db.add_all(reminders)
    await db.commit()

    logger.info(f"Queued {len(reminders)} reminders for appointment {appointment.id}")
    return reminders
