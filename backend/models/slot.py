"""Appointment slot model definitions."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Index, String, Time, text
from backend.database import Base


class Slot(Base):
    """A (doctor, date, time) unit of schedulable time and the booking it carries."""
    __tablename__ = "appointments"

    id = Column(String, primary_key=True)
    doctor_id = Column(String, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=True)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default='available')
    notes = Column(String)
    diagnosis = Column(String)
    prescription = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'booked', 'cancelled', 'completed')",
            name='ck_appointments_status',
        ),
        Index('idx_appointments_doctor_date', 'doctor_id', 'date'),
        Index('idx_appointments_patient', 'patient_id'),
        Index('idx_appointments_status', 'status'),
        # A patient cannot sit in two booked slots at the same moment.
        Index(
            'uq_appointments_patient_booked_slot',
            'patient_id', 'date', 'time',
            unique=True,
            sqlite_where=text("status = 'booked'"),
            postgresql_where=text("status = 'booked'"),
        ),
        # One live slot per doctor per moment; cancelled/completed rows are history.
        Index(
            'uq_appointments_doctor_open_slot',
            'doctor_id', 'date', 'time',
            unique=True,
            sqlite_where=text("status IN ('available', 'booked')"),
            postgresql_where=text("status IN ('available', 'booked')"),
        ),
    )
