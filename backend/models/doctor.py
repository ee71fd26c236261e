"""Doctor model definitions."""

from sqlalchemy import Column, Integer, String
from backend.database import Base


class Doctor(Base):
    """Represents a practitioner whose agenda is scheduled."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True)
