"""
Pydantic schemas for payment API.
"""

from typing import Optional

from pydantic import BaseModel, Field

from agenda.models.payment import PaymentKind
from agenda.schemas.types import UUIDStr


class CheckoutCreate(BaseModel):
    """Schema for starting a checkout."""

    appointment_id: UUIDStr
    mode: PaymentKind = Field(..., description="deposit, balance or full")
    provider: Optional[str] = Field(None, description="stripe or pagarme; defaults to the configured provider")


class CheckoutResponse(BaseModel):
    payment_id: UUIDStr
    provider: str
    order_id: str
    amount_cents: int
    checkout_url: Optional[str] = None
    client_secret: Optional[str] = None
    reused: bool = False


class WebhookAck(BaseModel):
    """Webhook reply. Providers only look at the status code."""

    ok: bool = True
    note: Optional[str] = None
    payment_status: Optional[str] = None
    appointment_status: Optional[str] = None


class MaintenanceResponse(BaseModel):
    completed_count: int
    canceled_count: int
