import enum
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from agenda.database import Base
from agenda.models.branch import new_id


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    failed = "failed"
    refunded = "refunded"
    partially_refunded = "partially_refunded"


class PaymentKind(str, enum.Enum):
    deposit = "deposit"
    balance = "balance"
    full = "full"


class Payment(Base):
    """A single payment attempt for one appointment.

    The appointment's paid total is the sum of amount_cents over its
    approved payments.
    """

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)

    provider = Column(String(30), nullable=False)  # stripe, pagarme
    provider_payment_id = Column(String(255), index=True)
    kind = Column(String(20), nullable=False, default=PaymentKind.deposit.value)
    covers_deposit = Column(Boolean, default=False)
    status = Column(String(30), nullable=False, default=PaymentStatus.pending.value)
    amount_cents = Column(Integer, nullable=False)

    # Last provider snapshot, kept for audit
    payload = Column(JSON)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    appointment = relationship("Appointment", back_populates="payments")

    def __repr__(self):
        return f"<Payment {self.id} {self.provider} {self.status} {self.amount_cents}>"


class WebhookEvent(Base):
    """Append-only ledger of provider webhook deliveries."""

    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),)

    id = Column(String(36), primary_key=True, default=new_id)
    provider = Column(String(30), nullable=False)
    event_id = Column(String(255), nullable=False)
    payload = Column(JSON)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
    # Set once the delivery has been applied; unprocessed rows may be retried
    processed_at = Column(DateTime(timezone=True))


class Reminder(Base):
    """Queued customer reminder; delivery happens outside this service."""

    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True, default=new_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    channel = Column(String(20), nullable=False, default="whatsapp")
    to_address = Column(String(255), nullable=False)
    template = Column(String(50))
    message = Column(Text, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default="pending")  # pending, sent, error
    attempts = Column(Integer, default=0)
    last_error = Column(Text)
    sent_at = Column(DateTime(timezone=True))
