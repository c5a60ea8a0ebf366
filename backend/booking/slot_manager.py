"""Slot lifecycle: available -> booked -> (cancelled | completed).

Every mutation is a conditional update on the slot's current status, so the
store decides which of two racing requests wins. The manager holds no locks of
its own; several processes may share one database.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterator

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.booking.results import BookingErrorKind, BookingResult
from backend.models.patient import Patient
from backend.models.slot import Slot

logger = logging.getLogger(__name__)

AVAILABLE = 'available'
BOOKED = 'booked'
CANCELLED = 'cancelled'
COMPLETED = 'completed'

AVAILABLE_SLOTS_BATCH_SIZE = 50
UPCOMING_WINDOW_DAYS = 7
UPCOMING_DEFAULT_LIMIT = 10
PAST_DEFAULT_LIMIT = 50


class AvailableSlots:
    """Open slots for one doctor on one day, ordered by time.

    Nothing is read until iteration starts, and every new iteration queries
    the store again.
    """

    def __init__(self, db: Session, doctor_id: str, slot_date: date):
        self._db = db
        self.doctor_id = doctor_id
        self.slot_date = slot_date

    def __iter__(self) -> Iterator[Slot]:
        statement = (
            select(Slot)
            .where(
                Slot.doctor_id == self.doctor_id,
                Slot.date == self.slot_date,
                Slot.status == AVAILABLE,
            )
            .order_by(Slot.time.asc())
            .execution_options(yield_per=AVAILABLE_SLOTS_BATCH_SIZE)
        )
        yield from self._db.scalars(statement)


class SlotBookingManager:
    def __init__(self, db: Session, clock: Callable[[], date] | None = None):
        self._db = db
        self._today = clock or date.today

    def get_slot(self, slot_id: str) -> Slot | None:
        return self._db.get(Slot, slot_id)

    def find_available_slot(self, doctor_id: str, slot_date: date, slot_time: time) -> Slot | None:
        statement = select(Slot).where(
            Slot.doctor_id == doctor_id,
            Slot.date == slot_date,
            Slot.time == slot_time,
            Slot.status == AVAILABLE,
        )
        return self._db.scalars(statement).first()

    def list_available_slots(self, doctor_id: str, slot_date: date) -> AvailableSlots:
        return AvailableSlots(self._db, doctor_id, slot_date)

    def list_patient_appointments(
        self,
        patient_id: str,
        status: str | None = None,
        past: bool | None = None,
    ) -> list[Slot]:
        """A patient's appointments, newest day first.

        ``past=True`` keeps days before today, ``past=False`` today onwards,
        ``None`` both.
        """
        statement = select(Slot).where(Slot.patient_id == patient_id)
        if status is not None:
            statement = statement.where(Slot.status == status)
        if past is True:
            statement = statement.where(Slot.date < self._today())
        elif past is False:
            statement = statement.where(Slot.date >= self._today())
        statement = statement.order_by(Slot.date.desc(), Slot.time.asc())
        return list(self._db.scalars(statement))

    def list_upcoming_appointments(
        self,
        patient_id: str | None = None,
        doctor_id: str | None = None,
        limit: int = UPCOMING_DEFAULT_LIMIT,
    ) -> list[Slot]:
        today = self._today()
        statement = select(Slot).where(
            Slot.status == BOOKED,
            Slot.date >= today,
            Slot.date <= today + timedelta(days=UPCOMING_WINDOW_DAYS),
        )
        if patient_id is not None:
            statement = statement.where(Slot.patient_id == patient_id)
        if doctor_id is not None:
            statement = statement.where(Slot.doctor_id == doctor_id)
        statement = statement.order_by(Slot.date.asc(), Slot.time.asc()).limit(limit)
        return list(self._db.scalars(statement))

    def list_past_appointments(
        self,
        patient_id: str | None = None,
        doctor_id: str | None = None,
        limit: int = PAST_DEFAULT_LIMIT,
    ) -> list[Slot]:
        statement = select(Slot).where(
            Slot.date < self._today(),
            Slot.status.in_((COMPLETED, CANCELLED)),
        )
        if patient_id is not None:
            statement = statement.where(Slot.patient_id == patient_id)
        if doctor_id is not None:
            statement = statement.where(Slot.doctor_id == doctor_id)
        statement = statement.order_by(Slot.date.desc(), Slot.time.asc()).limit(limit)
        return list(self._db.scalars(statement))

    def book(self, slot_id: str, patient_id: str, notes: str | None = None) -> BookingResult:
        slot = self._db.get(Slot, slot_id)
        if slot is None:
            return BookingResult.failure(BookingErrorKind.NOT_FOUND, 'Appointment slot not found.')

        if slot.status != AVAILABLE:
            return BookingResult.failure(BookingErrorKind.SLOT_UNAVAILABLE, 'Selected time slot is not available.')

        if slot.date < self._today():
            return BookingResult.failure(BookingErrorKind.PAST_DATE, 'Cannot book appointments in the past.')

        if self._db.get(Patient, patient_id) is None:
            return BookingResult.failure(BookingErrorKind.NOT_FOUND, 'Patient not found.')

        if self._find_conflicting_booking(patient_id, slot.date, slot.time) is not None:
            return BookingResult.failure(
                BookingErrorKind.DOUBLE_BOOKING,
                'Patient already has an appointment at this time.',
            )

        try:
            claimed = self._compare_and_set(
                slot_id,
                expected_status=AVAILABLE,
                values={'status': BOOKED, 'patient_id': patient_id, 'notes': notes},
            )
            if not claimed:
                self._db.rollback()
                logger.warning('Slot %s was claimed by another request before patient %s', slot_id, patient_id)
                return BookingResult.failure(
                    BookingErrorKind.SLOT_UNAVAILABLE,
                    'Selected time slot is not available.',
                )
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            logger.warning('Store rejected double booking of patient %s into slot %s', patient_id, slot_id)
            return BookingResult.failure(
                BookingErrorKind.DOUBLE_BOOKING,
                'Patient already has an appointment at this time.',
            )
        except SQLAlchemyError:
            self._db.rollback()
            raise

        logger.info('Slot %s booked by patient %s', slot_id, patient_id)
        return BookingResult.success(slot)

    def cancel(self, slot_id: str) -> BookingResult:
        # The freed time is not reopened; a new available slot has to be created for it.
        slot = self._db.get(Slot, slot_id)
        if slot is None:
            return BookingResult.failure(BookingErrorKind.NOT_FOUND, 'Appointment not found.')

        if slot.status != BOOKED:
            return BookingResult.failure(
                BookingErrorKind.INVALID_TRANSITION,
                'Only booked appointments can be cancelled.',
            )

        if slot.date < self._today():
            return BookingResult.failure(BookingErrorKind.PAST_DATE, 'Cannot cancel past appointments.')

        try:
            cancelled = self._compare_and_set(slot_id, expected_status=BOOKED, values={'status': CANCELLED})
            if not cancelled:
                self._db.rollback()
                return BookingResult.failure(
                    BookingErrorKind.INVALID_TRANSITION,
                    'Only booked appointments can be cancelled.',
                )
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            raise

        logger.info('Appointment %s cancelled', slot_id)
        return BookingResult.success(slot)

    def reschedule(
        self,
        appointment_id: str,
        target_date: date | None = None,
        target_time: time | None = None,
        target_doctor_id: str | None = None,
        notes: str | None = None,
    ) -> BookingResult:
        """Move a booking onto another available slot.

        Fields left out default to the current appointment's doctor, date and
        time. Releasing the source and claiming the target commit together or
        not at all.
        """
        source = self._db.get(Slot, appointment_id)
        if source is None:
            return BookingResult.failure(BookingErrorKind.NOT_FOUND, 'Appointment not found.')

        if source.status != BOOKED:
            return BookingResult.failure(
                BookingErrorKind.INVALID_TRANSITION,
                'Only booked appointments can be rescheduled.',
            )

        doctor_id = target_doctor_id or source.doctor_id
        target_date = target_date or source.date
        target_time = target_time or source.time

        if target_date < self._today():
            return BookingResult.failure(BookingErrorKind.PAST_DATE, 'Cannot reschedule appointments to the past.')

        target = self.find_available_slot(doctor_id, target_date, target_time)
        if target is None:
            return BookingResult.failure(BookingErrorKind.SLOT_UNAVAILABLE, 'New time slot is not available.')

        patient_id = source.patient_id
        carried_notes = notes or source.notes

        conflict = self._find_conflicting_booking(patient_id, target_date, target_time, exclude_slot_id=source.id)
        if conflict is not None:
            return BookingResult.failure(
                BookingErrorKind.DOUBLE_BOOKING,
                'Patient already has an appointment at this time.',
            )

        target_id = target.id
        try:
            released = self._compare_and_set(
                appointment_id,
                expected_status=BOOKED,
                expected_patient_id=patient_id,
                values={'status': AVAILABLE, 'patient_id': None, 'notes': None},
            )
            if not released:
                self._db.rollback()
                return BookingResult.failure(
                    BookingErrorKind.INVALID_TRANSITION,
                    'Appointment changed before it could be rescheduled.',
                )

            claimed = self._compare_and_set(
                target_id,
                expected_status=AVAILABLE,
                values={'status': BOOKED, 'patient_id': patient_id, 'notes': carried_notes},
            )
            if not claimed:
                self._db.rollback()
                logger.warning('Reschedule of %s lost target slot %s to another request', appointment_id, target_id)
                return BookingResult.failure(BookingErrorKind.SLOT_UNAVAILABLE, 'New time slot is not available.')

            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            logger.warning('Store rejected double booking of patient %s into slot %s', patient_id, target_id)
            return BookingResult.failure(
                BookingErrorKind.DOUBLE_BOOKING,
                'Patient already has an appointment at this time.',
            )
        except SQLAlchemyError:
            self._db.rollback()
            raise

        logger.info('Appointment %s rescheduled to slot %s', appointment_id, target_id)
        return BookingResult.success(target)

    def complete(
        self,
        appointment_id: str,
        diagnosis: str | None = None,
        prescription: str | None = None,
    ) -> BookingResult:
        slot = self._db.get(Slot, appointment_id)
        if slot is None:
            return BookingResult.failure(BookingErrorKind.NOT_FOUND, 'Appointment not found.')

        if slot.status != BOOKED:
            return BookingResult.failure(
                BookingErrorKind.INVALID_TRANSITION,
                'Only booked appointments can be completed.',
            )

        try:
            completed = self._compare_and_set(
                appointment_id,
                expected_status=BOOKED,
                values={'status': COMPLETED, 'diagnosis': diagnosis, 'prescription': prescription},
            )
            if not completed:
                self._db.rollback()
                return BookingResult.failure(
                    BookingErrorKind.INVALID_TRANSITION,
                    'Only booked appointments can be completed.',
                )
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            raise

        logger.info('Appointment %s completed', appointment_id)
        return BookingResult.success(slot)

    def _find_conflicting_booking(
        self,
        patient_id: str,
        slot_date: date,
        slot_time: time,
        exclude_slot_id: str | None = None,
    ) -> Slot | None:
        statement = select(Slot).where(
            Slot.patient_id == patient_id,
            Slot.date == slot_date,
            Slot.time == slot_time,
            Slot.status == BOOKED,
        )
        if exclude_slot_id is not None:
            statement = statement.where(Slot.id != exclude_slot_id)
        return self._db.scalars(statement).first()

    def _compare_and_set(
        self,
        slot_id: str,
        expected_status: str,
        values: dict,
        expected_patient_id: str | None = None,
    ) -> bool:
        """Apply ``values`` only if the row still has ``expected_status``.

        Returns False when no row matched, i.e. another request changed the
        slot first.
        """
        statement = update(Slot).where(Slot.id == slot_id, Slot.status == expected_status)
        if expected_patient_id is not None:
            statement = statement.where(Slot.patient_id == expected_patient_id)
        statement = statement.values(**values, updated_at=datetime.now()).execution_options(
            synchronize_session=False
        )
        result = self._db.execute(statement)
        return result.rowcount == 1
