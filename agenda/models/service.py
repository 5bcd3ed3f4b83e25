"""
Service catalog models.

A Service is what a customer books. ServiceTypes (techniques) are attached
to services through ServiceTypeAssignment rows, which may override the
duration, price, deposit and buffer of the booking.
"""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from agenda.database import Base
from agenda.models.branch import new_id


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=new_id)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    active = Column(Boolean, default=True)

    # Raw values, used when no service type assignment resolves
    duration_min = Column(Integer, nullable=False, default=60)
    price_cents = Column(Integer, nullable=False, default=0)
    deposit_cents = Column(Integer, nullable=False, default=0)
    buffer_min = Column(Integer)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    assignments = relationship("ServiceTypeAssignment", back_populates="service")

    def __repr__(self):
        return f"<Service {self.id} {self.name}>"


class ServiceType(Base):
    __tablename__ = "service_types"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(150), nullable=False)
    active = Column(Boolean, default=True)

    base_duration_min = Column(Integer)
    base_price_cents = Column(Integer)
    base_deposit_cents = Column(Integer)
    base_buffer_min = Column(Integer)


class ServiceTypeAssignment(Base):
    """Per (service, service type) override of the booking values."""

    __tablename__ = "service_type_assignments"

    id = Column(String(36), primary_key=True, default=new_id)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False, index=True)
    service_type_id = Column(String(36), ForeignKey("service_types.id"), nullable=True)

    # NULL means "use defaults"
    use_service_defaults = Column(Boolean, nullable=True)
    override_duration_min = Column(Integer)
    override_price_cents = Column(Integer)
    override_deposit_cents = Column(Integer)
    override_buffer_min = Column(Integer)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    service = relationship("Service", back_populates="assignments")
    service_type = relationship("ServiceType", lazy="joined")
