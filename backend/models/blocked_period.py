"""Blocked period model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from backend.database import Base


class BlockedPeriod(Base):
    """Represents time a doctor has taken out of the agenda."""
    __tablename__ = "blocked_periods"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    reason = Column(String)
