"""Sample doctors, patients and open slots for local development."""

import logging
from datetime import date, time, timedelta

from sqlalchemy.orm import Session

from backend.models.doctor import Doctor
from backend.models.patient import Patient
from backend.models.slot import Slot

logger = logging.getLogger(__name__)

SAMPLE_SLOT_TIMES = [time(9, 0), time(10, 0), time(11, 0), time(14, 0), time(15, 0), time(16, 0)]

SAMPLE_DOCTORS = [
    {
        'id': 'doc-001',
        'name': 'Dr. Sarah Johnson',
        'email': 'sarah.johnson@hospital.com',
        'phone': '+1-555-0101',
        'specialization': 'Cardiology',
        'experience': 15,
    },
    {
        'id': 'doc-002',
        'name': 'Dr. Michael Chen',
        'email': 'michael.chen@hospital.com',
        'phone': '+1-555-0102',
        'specialization': 'Neurology',
        'experience': 12,
    },
    {
        'id': 'doc-003',
        'name': 'Dr. Emily Davis',
        'email': 'emily.davis@hospital.com',
        'phone': '+1-555-0103',
        'specialization': 'Pediatrics',
        'experience': 8,
    },
]

SAMPLE_PATIENTS = [
    {
        'id': 'pat-001',
        'name': 'John Smith',
        'email': 'john.smith@email.com',
        'phone': '+1-555-0201',
        'date_of_birth': date(1985, 3, 15),
    },
    {
        'id': 'pat-002',
        'name': 'Maria Garcia',
        'email': 'maria.garcia@email.com',
        'phone': '+1-555-0202',
        'date_of_birth': date(1990, 7, 22),
    },
]


def insert_sample_data(db: Session, today: date | None = None) -> bool:
    """Populate an empty database; returns False when doctors already exist."""
    if db.query(Doctor).count() > 0:
        return False

    slot_date = (today or date.today()) + timedelta(days=1)

    db.add_all(Doctor(**fields) for fields in SAMPLE_DOCTORS)
    db.add_all(Patient(**fields) for fields in SAMPLE_PATIENTS)

    for doctor_index, fields in enumerate(SAMPLE_DOCTORS, start=1):
        for time_index, slot_time in enumerate(SAMPLE_SLOT_TIMES, start=1):
            db.add(
                Slot(
                    id=f'apt-{doctor_index}-{time_index}',
                    doctor_id=fields['id'],
                    date=slot_date,
                    time=slot_time,
                    status='available',
                )
            )

    db.commit()
    logger.info('Inserted sample data with open slots on %s', slot_date.isoformat())
    return True
