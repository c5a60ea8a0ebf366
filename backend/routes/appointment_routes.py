from datetime import date, datetime, time
from datetime import date as date_type, time as time_type

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_doctor, get_db
from backend.booking.results import BookingErrorKind, BookingResult
from backend.booking.slot_manager import SlotBookingManager
from backend.core import config
from backend.database import ensure_slot_schema
from backend.models.doctor import Doctor

router = APIRouter(tags=['appointments'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

SLOT_STATUSES = ('available', 'booked', 'cancelled', 'completed')

ERROR_STATUS_CODES = {
    BookingErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingErrorKind.PAST_DATE: status.HTTP_400_BAD_REQUEST,
    BookingErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    BookingErrorKind.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    BookingErrorKind.DOUBLE_BOOKING: status.HTTP_409_CONFLICT,
}


def normalize_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.NOTES_MAX_LENGTH:
        raise ValueError(f'Text must be {config.NOTES_MAX_LENGTH} characters or fewer.')

    return normalized


class BookAppointmentRequest(BaseModel):
    patient_id: str
    doctor_id: str
    date: date
    time: time
    notes: str | None = None

    @field_validator('patient_id', 'doctor_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Identifier is required.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_text(value)


class RescheduleAppointmentRequest(BaseModel):
    doctor_id: str | None = None
    date: date_type | None = None
    time: time_type | None = None
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_text(value)


class CompleteAppointmentRequest(BaseModel):
    diagnosis: str | None = None
    prescription: str | None = None

    @field_validator('diagnosis', 'prescription')
    @classmethod
    def validate_visit_text(cls, value: str | None) -> str | None:
        return normalize_text(value)


class SlotResponse(BaseModel):
    id: str
    doctor_id: str
    patient_id: str | None = None
    date: date
    time: time
    status: str
    notes: str | None = None
    diagnosis: str | None = None
    prescription: str | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class AvailableSlotResponse(BaseModel):
    id: str
    doctor_id: str
    date: date
    time: time
    status: str

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_slot_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def raise_for_failure(result: BookingResult) -> None:
    if result.ok:
        return

    raise HTTPException(
        status_code=ERROR_STATUS_CODES[result.error.kind],
        detail={'reason': result.error.kind.value, 'message': result.error.detail},
    )


@router.get('/slots/available', response_model=list[AvailableSlotResponse])
def list_available_slots(
    doctor_id: str = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    if slot_date < date.today():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={'reason': BookingErrorKind.PAST_DATE.value, 'message': 'Cannot view slots for past dates.'},
        )

    ensure_database_ready()

    try:
        manager = SlotBookingManager(db)
        return [AvailableSlotResponse.model_validate(slot) for slot in manager.list_available_slots(doctor_id, slot_date)]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/upcoming', response_model=list[SlotResponse])
def list_upcoming_appointments(
    patient_id: str | None = Query(default=None),
    doctor_id: str | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = SlotBookingManager(db).list_upcoming_appointments(patient_id, doctor_id, limit)
        return [SlotResponse.model_validate(slot) for slot in slots]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/past/all', response_model=list[SlotResponse])
def list_past_appointments(
    patient_id: str | None = Query(default=None),
    doctor_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = SlotBookingManager(db).list_past_appointments(patient_id, doctor_id, limit)
        return [SlotResponse.model_validate(slot) for slot in slots]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/patient/{patient_id}', response_model=list[SlotResponse])
def list_patient_appointments(
    patient_id: str,
    appointment_status: str | None = Query(default=None, alias='status'),
    past: bool | None = Query(default=None),
    db: Session = Depends(get_db),
):
    if appointment_status is not None and appointment_status not in SLOT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid appointment status.',
        )

    ensure_database_ready()

    try:
        slots = SlotBookingManager(db).list_patient_appointments(patient_id, appointment_status, past)
        return [SlotResponse.model_validate(slot) for slot in slots]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/{appointment_id}', response_model=SlotResponse)
def get_appointment(appointment_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        slot = SlotBookingManager(db).get_slot(appointment_id)
        if slot is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={'reason': BookingErrorKind.NOT_FOUND.value, 'message': 'Appointment not found.'},
            )

        return SlotResponse.model_validate(slot)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(data: BookAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        manager = SlotBookingManager(db)
        slot = manager.find_available_slot(data.doctor_id, data.date, data.time)
        if slot is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    'reason': BookingErrorKind.SLOT_UNAVAILABLE.value,
                    'message': 'Selected time slot is not available.',
                },
            )

        result = manager.book(slot.id, data.patient_id, data.notes)
        raise_for_failure(result)

        return SlotResponse.model_validate(result.slot)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.put('/{appointment_id}', response_model=SlotResponse)
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = SlotBookingManager(db).reschedule(
            appointment_id,
            target_date=data.date,
            target_time=data.time,
            target_doctor_id=data.doctor_id,
            notes=data.notes,
        )
        raise_for_failure(result)

        return SlotResponse.model_validate(result.slot)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.patch('/{appointment_id}/cancel', response_model=SlotResponse)
def cancel_appointment(appointment_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = SlotBookingManager(db).cancel(appointment_id)
        raise_for_failure(result)

        return SlotResponse.model_validate(result.slot)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.patch('/{appointment_id}/complete', response_model=SlotResponse)
def complete_appointment(
    appointment_id: str,
    data: CompleteAppointmentRequest,
    current_doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        manager = SlotBookingManager(db)
        slot = manager.get_slot(appointment_id)
        if slot is not None and slot.doctor_id != current_doctor.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    'reason': 'forbidden',
                    'message': 'Only the doctor who owns this appointment can complete it.',
                },
            )

        result = manager.complete(appointment_id, data.diagnosis, data.prescription)
        raise_for_failure(result)

        return SlotResponse.model_validate(result.slot)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
