"""Availability model definitions.

A timeplan with no ``specific_date`` is the recurring plan for its weekday;
one with a date replaces the recurring plan on that date only.
"""

from sqlalchemy import Boolean, Column, Date, Enum, ForeignKey, Integer, Table, Time
from sqlalchemy.orm import relationship

from backend.database import Base
from backend.scheduling.availability import DayOfWeek


timeplan_window_consultation_types = Table(
    "timeplan_window_consultation_types",
    Base.metadata,
    Column("window_id", Integer, ForeignKey("timeplan_windows.id", ondelete="CASCADE"), primary_key=True),
    Column("consultation_type_id", Integer, ForeignKey("consultation_types.id", ondelete="CASCADE"), primary_key=True),
)


class Timeplan(Base):
    """Represents a doctor's working hours for a weekday or a single date."""
    __tablename__ = "timeplans"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    day_of_week = Column(Enum(DayOfWeek, name="day_of_week"), nullable=False)
    specific_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    windows = relationship(
        "TimeplanWindow",
        back_populates="timeplan",
        cascade="all, delete-orphan",
        order_by="TimeplanWindow.start_time",
    )


class TimeplanWindow(Base):
    """Represents one opening span inside a timeplan."""
    __tablename__ = "timeplan_windows"

    id = Column(Integer, primary_key=True)
    timeplan_id = Column(Integer, ForeignKey("timeplans.id", ondelete="CASCADE"), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    timeplan = relationship("Timeplan", back_populates="windows")
    consultation_types = relationship("ConsultationType", secondary=timeplan_window_consultation_types)
