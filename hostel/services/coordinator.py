"""
Reservation coordinator.

Turns booking and cancellation requests into inventory mutations plus ledger
entries, keeping one invariant: a room's ``occupied`` counter always equals
its number of ``Confirmed`` bookings. Nothing here takes an in-process lock;
every capacity change is decided by the inventory's conditional update.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy.exc import DBAPIError

from hostel import config
from hostel.models.booking import BookingStatus
from hostel.services.errors import (
    BookingNotFound,
    DuplicateActiveBooking,
    InvalidTransition,
    RoomNotFound,
    StorageError,
    TransientStorageError,
)
from hostel.services.inventory import InventoryStore, ReleaseResult, ReserveResult
from hostel.services.ledger import BookingLedger, LedgerEvent
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


class RejectionReason(str, Enum):
    NOT_FOUND = "NotFound"
    NO_CAPACITY = "NoCapacity"
    GENDER_MISMATCH = "GenderMismatch"
    DUPLICATE_BOOKING = "DuplicateBooking"
    TRANSIENT_ERROR = "TransientError"


class CancelFailure(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_STATE = "InvalidState"
    TRANSIENT_ERROR = "TransientError"


@dataclass(frozen=True)
class BookingResult:
    booking_id: Optional[int] = None
    reason: Optional[RejectionReason] = None

    @property
    def confirmed(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class CancelResult:
    failure: Optional[CancelFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class Discrepancy:
    room_number: str
    occupied: int
    confirmed: int


class ReservationCoordinator:
    def __init__(
        self,
        inventory: InventoryStore,
        ledger: BookingLedger,
        projector=None,
        profile_lookup: Optional[Callable[[int], dict]] = None,
        max_attempts: int = config.BOOKING_MAX_ATTEMPTS,
        backoff_seconds: float = config.BOOKING_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inventory = inventory
        self.ledger = ledger
        self.projector = projector
        self.profile_lookup = profile_lookup
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def _retrying(self, operation: Callable, description: str):
        """Run ``operation``, retrying transient storage failures with exponential backoff."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except TransientStorageError as exc:
                if attempt == self.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {exc}")
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(f"{description} failed (attempt {attempt}), retrying in {delay:.3f}s: {exc}")
                self.sleep(delay)

    def _student_gender(self, student_id: int) -> Optional[str]:
        if self.profile_lookup is None:
            return None
        profile = self.profile_lookup(student_id) or {}
        return profile.get("gender")

    def book(self, room_number: str, student_id: int, gender: Optional[str] = None) -> BookingResult:
        logger.debug(f"Booking request: room {room_number}, student {student_id}")
        try:
            room = self._retrying(lambda: self.inventory.get_room(room_number), f"Loading room {room_number}")
        except RoomNotFound:
            return self._reject(room_number, student_id, RejectionReason.NOT_FOUND)
        except TransientStorageError:
            return self._reject(room_number, student_id, RejectionReason.TRANSIENT_ERROR)
        if room.retired:
            return self._reject(room_number, student_id, RejectionReason.NOT_FOUND)
        price = room.price

        if gender is None:
            try:
                gender = self._retrying(
                    lambda: self._student_gender(student_id), f"Loading profile of student {student_id}"
                )
            except TransientStorageError:
                return self._reject(room_number, student_id, RejectionReason.TRANSIENT_ERROR)
        if not room.admits(gender):
            return self._reject(room_number, student_id, RejectionReason.GENDER_MISMATCH)

        try:
            held = self._retrying(
                lambda: self.ledger.has_confirmed(room_number, student_id),
                f"Checking existing bookings in room {room_number}",
            )
            if held:
                return self._reject(room_number, student_id, RejectionReason.DUPLICATE_BOOKING)
            generation = self._generation()
            reserved = self._retrying(
                lambda: self.inventory.try_reserve(room_number), f"Reserving room {room_number}"
            )
        except RoomNotFound:
            return self._reject(room_number, student_id, RejectionReason.NOT_FOUND)
        except TransientStorageError:
            return self._reject(room_number, student_id, RejectionReason.TRANSIENT_ERROR)

        if reserved == ReserveResult.FULL:
            self._record_no_capacity(room_number, student_id)
            return self._reject(room_number, student_id, RejectionReason.NO_CAPACITY)

        event = LedgerEvent(
            status=BookingStatus.CONFIRMED,
            room_number=room_number,
            student_id=student_id,
            amount=price,
        )
        try:
            self._retrying(lambda: self.ledger.append(event), f"Recording booking for room {room_number}")
        except DuplicateActiveBooking:
            self._compensate(room_number, student_id, generation)
            return self._reject(room_number, student_id, RejectionReason.DUPLICATE_BOOKING)
        except TransientStorageError:
            self._compensate(room_number, student_id, generation)
            return self._reject(room_number, student_id, RejectionReason.TRANSIENT_ERROR)
        except StorageError:
            self._compensate(room_number, student_id, generation)
            raise

        booking_id = event.booking_id
        self._notify(room_number, +1, generation)
        logger.info(f"Booking {booking_id} confirmed: room {room_number}, student {student_id}")
        return BookingResult(booking_id=booking_id)

    def _record_no_capacity(self, room_number: str, student_id: int) -> None:
        event = LedgerEvent(
            status=BookingStatus.REJECTED,
            room_number=room_number,
            student_id=student_id,
            reason=RejectionReason.NO_CAPACITY.value,
        )
        try:
            self._retrying(lambda: self.ledger.append(event), f"Recording rejection for room {room_number}")
        except TransientStorageError:
            # no capacity is held, so a lost rejection entry only thins the audit trail
            logger.warning(f"Rejection of student {student_id} for room {room_number} was not recorded")

    def _compensate(self, room_number: str, student_id: int, generation: Optional[int] = None) -> None:
        try:
            self._retrying(lambda: self.inventory.release(room_number), f"Releasing room {room_number}")
        except (TransientStorageError, RoomNotFound) as exc:
            logger.error(
                f"RECONCILE: room {room_number} holds a place for student {student_id} "
                f"without a confirmed booking; compensating release failed: {exc}"
            )
        else:
            logger.warning(f"Released place in room {room_number} after failed booking for student {student_id}")
            # a rebuild since the reservation counted the place that was just returned
            if self.projector is not None and generation != self.projector.generation:
                self.projector.invalidate()

    def _reject(self, room_number: str, student_id: int, reason: RejectionReason) -> BookingResult:
        logger.debug(f"Booking rejected: room {room_number}, student {student_id}, reason {reason.value}")
        return BookingResult(reason=reason)

    def cancel(self, booking_id: int, reason: Optional[str] = None) -> CancelResult:
        return self._finish(booking_id, BookingStatus.CANCELLED, reason)

    def complete(self, booking_id: int) -> CancelResult:
        """Check the student out; the place is released like a cancellation."""
        return self._finish(booking_id, BookingStatus.COMPLETED, None)

    def _finish(self, booking_id: int, status: BookingStatus, reason: Optional[str]) -> CancelResult:
        try:
            booking = self._retrying(lambda: self.ledger.get(booking_id), f"Loading booking {booking_id}")
        except TransientStorageError:
            return CancelResult(CancelFailure.TRANSIENT_ERROR)
        if booking is None:
            return CancelResult(CancelFailure.NOT_FOUND)
        if booking.status != BookingStatus.CONFIRMED.value:
            logger.warning(f"Booking {booking_id} is {booking.status}; cannot move to {status.value}")
            return CancelResult(CancelFailure.INVALID_STATE)

        room_number = booking.room_number
        generation = self._generation()
        try:
            released = self._retrying(
                lambda: self._release_with_status(booking_id, room_number, status, reason),
                f"Moving booking {booking_id} to {status.value}",
            )
        except (InvalidTransition, BookingNotFound):
            return CancelResult(CancelFailure.INVALID_STATE)
        except (TransientStorageError, RoomNotFound):
            return CancelResult(CancelFailure.TRANSIENT_ERROR)

        if released == ReleaseResult.ALREADY_AT_ZERO:
            logger.error(f"RECONCILE: booking {booking_id} was confirmed but room {room_number} held no place")
        else:
            self._notify(room_number, -1, generation)
        logger.info(f"Booking {booking_id} {status.value.lower()}: room {room_number}")
        return CancelResult()

    def _release_with_status(self, booking_id: int, room_number: str, status: BookingStatus,
                             reason: Optional[str]) -> ReleaseResult:
        # status change and release commit together or not at all
        session = self.ledger.session
        self.ledger.append(LedgerEvent(status=status, booking_id=booking_id, reason=reason), commit=False)
        try:
            released = self.inventory.release(room_number, commit=False)
            session.commit()
        except RoomNotFound:
            session.rollback()
            raise
        except DBAPIError as exc:
            session.rollback()
            raise TransientStorageError(str(exc.orig)) from exc
        return released

    def on_payment_confirmed(self, booking_id: int) -> CancelResult:
        try:
            self._retrying(lambda: self.ledger.mark_paid(booking_id), f"Settling booking {booking_id}")
        except BookingNotFound:
            return CancelResult(CancelFailure.NOT_FOUND)
        except InvalidTransition:
            return CancelResult(CancelFailure.INVALID_STATE)
        except TransientStorageError:
            return CancelResult(CancelFailure.TRANSIENT_ERROR)
        logger.info(f"Payment recorded for booking {booking_id}")
        return CancelResult()

    def audit(self) -> List[Discrepancy]:
        """Rooms whose occupied counter disagrees with their confirmed bookings."""
        found = []
        for room in self.inventory.list_rooms(include_retired=True, limit=None):
            confirmed = self.ledger.count_confirmed(room.number)
            if confirmed != room.occupied:
                logger.error(
                    f"RECONCILE: room {room.number} occupied={room.occupied} confirmed={confirmed}"
                )
                found.append(Discrepancy(room.number, room.occupied, confirmed))
        return found

    def _generation(self) -> Optional[int]:
        return self.projector.generation if self.projector is not None else None

    def _notify(self, room_number: str, delta: int, generation: Optional[int] = None) -> None:
        if self.projector is not None:
            self.projector.on_room_changed(room_number, delta, generation)
