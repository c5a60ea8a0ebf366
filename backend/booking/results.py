"""Outcome types returned by the slot booking state machine."""

from dataclasses import dataclass
from enum import Enum

from backend.models.slot import Slot


class BookingErrorKind(str, Enum):
    NOT_FOUND = 'not_found'
    INVALID_TRANSITION = 'invalid_transition'
    SLOT_UNAVAILABLE = 'slot_unavailable'
    DOUBLE_BOOKING = 'double_booking'
    PAST_DATE = 'past_date'


@dataclass(frozen=True)
class BookingError:
    kind: BookingErrorKind
    detail: str


@dataclass(frozen=True)
class BookingResult:
    """Either the slot's new state or the reason the mutation was refused."""

    slot: Slot | None = None
    error: BookingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, slot: Slot) -> 'BookingResult':
        return cls(slot=slot)

    @classmethod
    def failure(cls, kind: BookingErrorKind, detail: str) -> 'BookingResult':
        return cls(error=BookingError(kind=kind, detail=detail))
