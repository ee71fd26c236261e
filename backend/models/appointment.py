"""Appointment model definitions."""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String

from backend.database import Base

STATUS_BOOKED = "booked"
STATUS_CANCELLED = "cancelled"


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    consultation_type_id = Column(Integer, ForeignKey("consultation_types.id"), nullable=True)
    patient_name = Column(String)
    notes = Column(String)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=STATUS_BOOKED)
