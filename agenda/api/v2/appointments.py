"""
Appointment API endpoints.

Booking, cancellation and rescheduling act on the caller's own
appointments; someone else's appointment answers 404.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Query, status

from agenda.api.deps import Config, CurrentCustomerId, DbSession, OptionalCustomerId, ProviderLookup
from agenda.exceptions import NotFoundError
from agenda.models.branch import Branch
from agenda.schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    CancelResponse,
    RescheduleRequest,
    RescheduleResponse,
)
from agenda.schemas.availability import AvailabilitySnapshotResponse
from agenda.services.appointment_service import (
    cancel_appointment,
    create_appointment,
    list_upcoming_appointments,
    reschedule_appointment,
)
from agenda.services.availability_snapshot import SnapshotOptions, build_availability_data

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    db: DbSession,
    config: Config,
    customer_id: CurrentCustomerId,
    payload: AppointmentCreate,
) -> AppointmentResponse:
    """Book a pending appointment on a slot returned by /slots."""
    appointment = await create_appointment(
        db,
        customer_id=customer_id,
        service_id=payload.service_id,
        starts_at=payload.starts_at,
        staff_id=payload.staff_id,
        service_type_id=payload.service_type_id,
        notes=payload.notes,
        config=config,
    )
    return AppointmentResponse.model_validate(appointment)


@router.get("/availability", response_model=AvailabilitySnapshotResponse)
async def get_availability_snapshot(
    db: DbSession,
    config: Config,
    customer_id: OptionalCustomerId,
    branch_id: str = Query(..., description="Branch to build the calendar for"),
    days: int = Query(60, ge=1, le=180, description="Horizon in days"),
) -> AvailabilitySnapshotResponse:
    """
    Calendar view of the branch for the next ``days`` days.

    Advisory only; the slot check at booking time is authoritative.
    """
    branch = await db.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError("Branch", branch_id)

    now = datetime.now(timezone.utc)
    appointments = await list_upcoming_appointments(db, branch.id, now=now, days=days)
    data = build_availability_data(
        appointments,
        customer_id,
        SnapshotOptions(
            fallback_buffer_minutes=config.default_buffer_min,
            days=days,
            timezone=branch.timezone or config.timezone,
        ),
    )
    return AvailabilitySnapshotResponse.from_data(data)


@router.post("/{appointment_id}/cancel", response_model=CancelResponse)
async def cancel(
    db: DbSession,
    config: Config,
    customer_id: CurrentCustomerId,
    providers: ProviderLookup,
    appointment_id: str,
) -> CancelResponse:
    """Cancel an appointment, refunding what the penalty window allows."""
    result = await cancel_appointment(
        db, appointment_id, customer_id, config=config, provider_lookup=providers
    )
    return CancelResponse(appointment_id=result.appointment_id, refunded_cents=result.refunded_cents)


@router.post("/{appointment_id}/reschedule", response_model=RescheduleResponse)
async def reschedule(
    db: DbSession,
    config: Config,
    customer_id: CurrentCustomerId,
    appointment_id: str,
    payload: RescheduleRequest,
) -> RescheduleResponse:
    """Move a pending appointment; both dates must respect the lead time."""
    result = await reschedule_appointment(
        db, appointment_id, customer_id, payload.starts_at, config=config
    )
    return RescheduleResponse(starts_at=result.starts_at, ends_at=result.ends_at)
