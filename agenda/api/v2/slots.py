"""
Slot availability endpoint.

Lists bookable start instants for a service on one day. This is a PUBLIC
endpoint - no authentication required.
"""

from typing import Optional

from fastapi import APIRouter, Query

from agenda.api.deps import Config, DbSession
from agenda.exceptions import NotFoundError
from agenda.models.branch import Branch
from agenda.models.service import Service
from agenda.schemas.availability import SlotsResponse
from agenda.services.availability_service import compute_available_slots
from agenda.utils.timezone import get_timezone, parse_date

router = APIRouter()


@router.get("", response_model=SlotsResponse)
async def get_slots(
    db: DbSession,
    config: Config,
    service_id: str = Query(..., description="Service to book"),
    date: str = Query(..., description="Day in YYYY-MM-DD, branch local time"),
    staff_id: Optional[str] = Query(None, description="Staff member; auto-selected when omitted"),
    service_type_id: Optional[str] = Query(None, description="Preferred service type"),
) -> SlotsResponse:
    """
    Get available slot starts.

    An empty list means nothing is bookable that day (closed, nobody
    working, or fully booked).
    """
    target_date = parse_date(date)

    service = await db.get(Service, service_id)
    if service is None or service.active is False:
        raise NotFoundError("Service", service_id, reason="service_not_found")

    branch = await db.get(Branch, service.branch_id)
    tz = get_timezone(branch.timezone if branch else None, fallback=config.timezone)

    result = await compute_available_slots(
        db,
        service.id,
        target_date,
        staff_id=staff_id,
        config=config,
        service_type_id=service_type_id,
    )
    return SlotsResponse(
        staff_id=result.staff_id,
        slots=result.slots,
        date=target_date.isoformat(),
        timezone=tz.key,
    )
