"""Patient model definitions."""

from sqlalchemy import Column, Date, String
from backend.database import Base


class Patient(Base):
    """Represents a patient who can book slots."""
    __tablename__ = "patients"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String)
    date_of_birth = Column(Date)
    address = Column(String)
