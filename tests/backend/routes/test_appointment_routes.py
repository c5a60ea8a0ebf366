import os
from datetime import date, time, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.booking.results import BookingErrorKind, BookingResult  # noqa: E402
from backend.booking.slot_manager import SlotBookingManager  # noqa: E402
from backend.routes.appointment_routes import (  # noqa: E402
    BookAppointmentRequest,
    CompleteAppointmentRequest,
    RescheduleAppointmentRequest,
    book_appointment,
    cancel_appointment,
    complete_appointment,
    get_appointment,
    list_available_slots,
    list_past_appointments,
    list_patient_appointments,
    list_upcoming_appointments,
    raise_for_failure,
    reschedule_appointment,
)
from backend.database import Base  # noqa: E402
from backend.models.doctor import Doctor  # noqa: E402
from backend.models.patient import Patient  # noqa: E402
from backend.models.slot import Slot  # noqa: E402

TABLES = [Doctor.__table__, Patient.__table__, Slot.__table__]
NEXT_WEEK = date.today() + timedelta(days=7)


@pytest.fixture
def appointment_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('backend.routes.appointment_routes.ensure_database_ready', lambda: None)

    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    db.add_all([
        Doctor(id='doc-001', name='Dr. Sarah Johnson', email='sarah.johnson@hospital.com'),
        Doctor(id='doc-002', name='Dr. Michael Chen', email='michael.chen@hospital.com'),
        Patient(id='pat-001', name='John Smith', email='john.smith@email.com'),
        Patient(id='pat-002', name='Maria Garcia', email='maria.garcia@email.com'),
        Slot(id='apt-1-1', doctor_id='doc-001', date=NEXT_WEEK, time=time(9, 0)),
        Slot(id='apt-1-2', doctor_id='doc-001', date=NEXT_WEEK, time=time(10, 0)),
        Slot(id='apt-2-2', doctor_id='doc-002', date=NEXT_WEEK, time=time(10, 0)),
    ])
    db.commit()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


def book(db, doctor_id='doc-001', slot_time=time(10, 0), patient_id='pat-001', notes=None):
    request = BookAppointmentRequest(
        patient_id=patient_id,
        doctor_id=doctor_id,
        date=NEXT_WEEK,
        time=slot_time,
        notes=notes,
    )
    return book_appointment(data=request, db=db)


def test_book_appointment_request_normalizes_fields() -> None:
    request = BookAppointmentRequest(
        patient_id=' pat-001 ',
        doctor_id='doc-001',
        date=date(2026, 1, 5),
        time='10:00',
        notes='   ',
    )

    assert request.patient_id == 'pat-001'
    assert request.time == time(10, 0)
    assert request.notes is None


def test_book_appointment_request_rejects_long_notes() -> None:
    with pytest.raises(ValidationError):
        BookAppointmentRequest(
            patient_id='pat-001',
            doctor_id='doc-001',
            date=date(2026, 1, 5),
            time=time(10, 0),
            notes='x' * 601,
        )


def test_complete_appointment_request_trims_visit_text() -> None:
    request = CompleteAppointmentRequest(diagnosis=' bronchitis ', prescription='')

    assert request.diagnosis == 'bronchitis'
    assert request.prescription is None


@pytest.mark.parametrize(
    ('kind', 'status_code'),
    [
        (BookingErrorKind.NOT_FOUND, 404),
        (BookingErrorKind.PAST_DATE, 400),
        (BookingErrorKind.INVALID_TRANSITION, 409),
        (BookingErrorKind.SLOT_UNAVAILABLE, 409),
        (BookingErrorKind.DOUBLE_BOOKING, 409),
    ],
)
def test_raise_for_failure_keeps_failure_reason(kind: BookingErrorKind, status_code: int) -> None:
    with pytest.raises(HTTPException) as exception_info:
        raise_for_failure(BookingResult.failure(kind, 'reason text'))

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail == {'reason': kind.value, 'message': 'reason text'}


def test_book_appointment_books_matching_slot(appointment_db) -> None:
    response = book(appointment_db, notes=' cough ')

    assert response.id == 'apt-1-2'
    assert response.status == 'booked'
    assert response.patient_id == 'pat-001'
    assert response.notes == 'cough'


def test_book_appointment_reports_taken_slot(appointment_db) -> None:
    book(appointment_db)

    with pytest.raises(HTTPException) as exception_info:
        book(appointment_db, patient_id='pat-002')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['reason'] == 'slot_unavailable'


def test_book_appointment_reports_double_booking(appointment_db) -> None:
    book(appointment_db)

    with pytest.raises(HTTPException) as exception_info:
        book(appointment_db, doctor_id='doc-002')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['reason'] == 'double_booking'


def test_list_available_slots_returns_open_slots_in_time_order(appointment_db) -> None:
    book(appointment_db, slot_time=time(9, 0))

    slots = list_available_slots(doctor_id='doc-001', slot_date=NEXT_WEEK, db=appointment_db)

    assert [slot.id for slot in slots] == ['apt-1-2']
    assert slots[0].status == 'available'


def test_list_available_slots_rejects_past_dates(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_available_slots(doctor_id='doc-001', slot_date=date.today() - timedelta(days=1), db=appointment_db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['reason'] == 'past_date'


def test_get_appointment_returns_not_found_when_missing(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id='apt-9-9', db=appointment_db)

    assert exception_info.value.status_code == 404


def test_reschedule_appointment_returns_target_slot(appointment_db) -> None:
    book(appointment_db, notes='cough')

    response = reschedule_appointment(
        appointment_id='apt-1-2',
        data=RescheduleAppointmentRequest(time=time(9, 0)),
        db=appointment_db,
    )

    assert response.id == 'apt-1-1'
    assert response.patient_id == 'pat-001'
    assert response.notes == 'cough'
    assert get_appointment(appointment_id='apt-1-2', db=appointment_db).status == 'available'


def test_reschedule_appointment_reports_unavailable_target(appointment_db) -> None:
    book(appointment_db)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            appointment_id='apt-1-2',
            data=RescheduleAppointmentRequest(time=time(13, 0)),
            db=appointment_db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['reason'] == 'slot_unavailable'


def test_cancel_appointment_cancels_booking(appointment_db) -> None:
    book(appointment_db)

    response = cancel_appointment(appointment_id='apt-1-2', db=appointment_db)

    assert response.status == 'cancelled'


def test_cancel_appointment_rejects_open_slot(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id='apt-1-1', db=appointment_db)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['reason'] == 'invalid_transition'


def test_cancel_appointment_returns_not_found_when_missing(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id='apt-9-9', db=appointment_db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail['reason'] == 'not_found'


def test_cancel_appointment_maps_database_errors(appointment_db, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_cancel(self, slot_id):
        raise SQLAlchemyError('connection lost')

    monkeypatch.setattr(SlotBookingManager, 'cancel', failing_cancel)

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id='apt-1-2', db=appointment_db)

    assert exception_info.value.status_code == 503


def test_complete_appointment_records_visit(appointment_db) -> None:
    book(appointment_db)
    doctor = appointment_db.get(Doctor, 'doc-001')

    response = complete_appointment(
        appointment_id='apt-1-2',
        data=CompleteAppointmentRequest(diagnosis='bronchitis', prescription='cough syrup'),
        current_doctor=doctor,
        db=appointment_db,
    )

    assert response.status == 'completed'
    assert response.diagnosis == 'bronchitis'
    assert response.prescription == 'cough syrup'


def test_complete_appointment_rejects_other_doctor(appointment_db) -> None:
    book(appointment_db)
    other_doctor = appointment_db.get(Doctor, 'doc-002')

    with pytest.raises(HTTPException) as exception_info:
        complete_appointment(
            appointment_id='apt-1-2',
            data=CompleteAppointmentRequest(diagnosis='bronchitis'),
            current_doctor=other_doctor,
            db=appointment_db,
        )

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail['reason'] == 'forbidden'
    assert get_appointment(appointment_id='apt-1-2', db=appointment_db).status == 'booked'


def test_complete_appointment_rejects_second_completion(appointment_db) -> None:
    book(appointment_db)
    doctor = appointment_db.get(Doctor, 'doc-001')
    complete_appointment(
        appointment_id='apt-1-2',
        data=CompleteAppointmentRequest(diagnosis='bronchitis'),
        current_doctor=doctor,
        db=appointment_db,
    )

    with pytest.raises(HTTPException) as exception_info:
        complete_appointment(
            appointment_id='apt-1-2',
            data=CompleteAppointmentRequest(diagnosis='bronchitis'),
            current_doctor=doctor,
            db=appointment_db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['reason'] == 'invalid_transition'


def test_reschedule_appointment_request_accepts_partial_target() -> None:
    request = RescheduleAppointmentRequest(time='11:00')

    assert request.date is None
    assert request.time == time(11, 0)
    assert request.doctor_id is None


def test_list_patient_appointments_returns_bookings_for_patient(appointment_db) -> None:
    book(appointment_db, slot_time=time(9, 0))
    book(appointment_db, doctor_id='doc-002', patient_id='pat-002')

    slots = list_patient_appointments(patient_id='pat-001', appointment_status='booked', past=False, db=appointment_db)

    assert [slot.id for slot in slots] == ['apt-1-1']
    assert slots[0].status == 'booked'


def test_list_patient_appointments_rejects_unknown_status(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_patient_appointments(patient_id='pat-001', appointment_status='pending', past=None, db=appointment_db)

    assert exception_info.value.status_code == 400


def test_list_upcoming_appointments_returns_booked_slots_this_week(appointment_db) -> None:
    book(appointment_db, slot_time=time(9, 0))
    book(appointment_db, doctor_id='doc-002', patient_id='pat-002')

    slots = list_upcoming_appointments(patient_id=None, doctor_id=None, limit=10, db=appointment_db)

    assert [slot.id for slot in slots] == ['apt-1-1', 'apt-2-2']
    assert [slot.id for slot in list_upcoming_appointments(
        patient_id='pat-002', doctor_id=None, limit=10, db=appointment_db,
    )] == ['apt-2-2']


def test_list_past_appointments_skips_future_visits(appointment_db) -> None:
    book(appointment_db)
    cancel_appointment(appointment_id='apt-1-2', db=appointment_db)

    assert list_past_appointments(patient_id='pat-001', doctor_id=None, limit=50, db=appointment_db) == []
