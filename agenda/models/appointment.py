"""
Appointment and customer models.
"""

import enum
from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Text, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from agenda.database import Base
from agenda.models.branch import new_id


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    reserved = "reserved"
    confirmed = "confirmed"
    canceled = "canceled"
    completed = "completed"


# Statuses that still hold a slot on the calendar
ACTIVE_STATUSES = (
    AppointmentStatus.pending.value,
    AppointmentStatus.reserved.value,
    AppointmentStatus.confirmed.value,
)
TERMINAL_STATUSES = (
    AppointmentStatus.canceled.value,
    AppointmentStatus.completed.value,
)


class Customer(Base):
    """Booking customer profile."""

    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=new_id)
    full_name = Column(String(200))
    email = Column(String(255), index=True)
    whatsapp = Column(String(30))

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_staff_starts_at", "staff_id", "starts_at"),
        Index("ix_appointments_status_created_at", "status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True, index=True)
    staff_id = Column(String(36), ForeignKey("staff.id"), nullable=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=True)
    service_type_id = Column(String(36), ForeignKey("service_types.id"), nullable=True)

    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=AppointmentStatus.pending.value)
    # pending, reserved, confirmed, canceled, completed

    # Price snapshot taken at booking time
    total_cents = Column(Integer, nullable=False, default=0)
    deposit_cents = Column(Integer, nullable=True)
    # Legacy decimal deposit ("valor_sinal"), only read when deposit_cents is unset
    legacy_deposit_amount = Column(Numeric(10, 2), nullable=True)

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    payments = relationship("Payment", back_populates="appointment", order_by="Payment.created_at")

    def __repr__(self):
        return f"<Appointment {self.id} {self.status} {self.starts_at}>"
