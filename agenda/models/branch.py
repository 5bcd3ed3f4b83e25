"""
Branch, staff and working-hours models.

Weekdays are stored 0=Sunday..6=Saturday. Opening hours are local wall-clock
times in the branch's timezone.
"""

import uuid
from sqlalchemy import Column, String, Integer, Boolean, Time, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from agenda.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Branch(Base):
    """A physical location with its own timezone and opening hours."""

    __tablename__ = "branches"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(150), nullable=False)
    timezone = Column(String(64))
    active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    staff = relationship("Staff", back_populates="branch")

    def __repr__(self):
        return f"<Branch {self.id} {self.name}>"


class Staff(Base):
    __tablename__ = "staff"

    id = Column(String(36), primary_key=True, default=new_id)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    active = Column(Boolean, default=True)

    branch = relationship("Branch", back_populates="staff")

    def __repr__(self):
        return f"<Staff {self.id} {self.name}>"


class BusinessHours(Base):
    """Opening window of a branch for one weekday."""

    __tablename__ = "business_hours"
    __table_args__ = (UniqueConstraint("branch_id", "weekday", name="uq_business_hours_branch_weekday"),)

    id = Column(String(36), primary_key=True, default=new_id)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)


class StaffHours(Base):
    """Personal working window of a staff member for one weekday."""

    __tablename__ = "staff_hours"
    __table_args__ = (UniqueConstraint("staff_id", "weekday", name="uq_staff_hours_staff_weekday"),)

    id = Column(String(36), primary_key=True, default=new_id)
    staff_id = Column(String(36), ForeignKey("staff.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)


class Blackout(Base):
    """Time off or any other unavailability unrelated to appointments."""

    __tablename__ = "blackouts"

    id = Column(String(36), primary_key=True, default=new_id)
    staff_id = Column(String(36), ForeignKey("staff.id"), nullable=False, index=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    reason = Column(Text)
