"""
Pydantic schemas for slot and calendar availability.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from agenda.schemas.types import UUIDStr
from agenda.services.availability_snapshot import AvailabilityData


class SlotsResponse(BaseModel):
    """Bookable slot starts for one service on one day."""

    staff_id: Optional[UUIDStr] = None
    slots: List[datetime] = Field(default_factory=list)
    date: str
    timezone: str


class BusyIntervalOut(BaseModel):
    start: datetime
    end: datetime


class AvailabilitySnapshotResponse(BaseModel):
    """Calendar snapshot; day keys are YYYY-MM-DD in the branch timezone."""

    available_days: List[str] = Field(default_factory=list)
    partially_booked_days: List[str] = Field(default_factory=list)
    booked_days: List[str] = Field(default_factory=list)
    my_days: List[str] = Field(default_factory=list)
    day_slots: Dict[str, List[str]] = Field(default_factory=dict)
    booked_slots: Dict[str, List[str]] = Field(default_factory=dict)
    busy_intervals: Dict[str, List[BusyIntervalOut]] = Field(default_factory=dict)

    @classmethod
    def from_data(cls, data: AvailabilityData) -> "AvailabilitySnapshotResponse":
        return cls(
            available_days=sorted(data.available_days),
            partially_booked_days=sorted(data.partially_booked_days),
            booked_days=sorted(data.booked_days),
            my_days=sorted(data.my_days),
            day_slots=data.day_slots,
            booked_slots=data.booked_slots,
            busy_intervals={
                day: [BusyIntervalOut(start=i.start, end=i.end) for i in intervals]
                for day, intervals in data.busy_intervals.items()
            },
        )
