"""Consultation type model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from backend.database import Base


class ConsultationType(Base):
    """Represents a bookable service with a fixed duration."""
    __tablename__ = "consultation_types"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    rest_after_minutes = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
