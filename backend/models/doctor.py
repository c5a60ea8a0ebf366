"""Doctor model definitions."""

from sqlalchemy import Column, Integer, String
from backend.database import Base


class Doctor(Base):
    """Represents a doctor who owns appointment slots."""
    __tablename__ = "doctors"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String)
    specialization = Column(String)
    experience = Column(Integer)
