"""
Pydantic schemas for appointment API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agenda.schemas.types import UUIDStr
from agenda.utils.timezone import ensure_utc


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment."""

    service_id: UUIDStr
    starts_at: datetime = Field(..., description="Slot start as returned by /slots")
    staff_id: Optional[UUIDStr] = None
    service_type_id: Optional[UUIDStr] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("starts_at")
    @classmethod
    def normalize_starts_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUIDStr
    branch_id: UUIDStr
    customer_id: Optional[UUIDStr] = None
    staff_id: Optional[UUIDStr] = None
    service_id: Optional[UUIDStr] = None
    service_type_id: Optional[UUIDStr] = None
    starts_at: datetime
    ends_at: datetime
    status: str
    total_cents: int
    deposit_cents: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("starts_at", "ends_at", "created_at")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None


class CancelResponse(BaseModel):
    ok: bool = True
    appointment_id: UUIDStr
    status: str = "canceled"
    refunded_cents: int


class RescheduleRequest(BaseModel):
    starts_at: datetime = Field(..., description="New start instant")

    @field_validator("starts_at")
    @classmethod
    def normalize_starts_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RescheduleResponse(BaseModel):
    ok: bool = True
    starts_at: datetime
    ends_at: datetime
