"""Booking ledger: append-only lifecycle events plus each booking's current status."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from hostel.models.booking import (
    ACTIVE_BOOKING_INDEX,
    Booking,
    BookingEvent,
    BookingStatus,
    PaymentStatus,
    TRANSITIONS,
    can_transition,
)
from hostel.services.errors import (
    BookingNotFound,
    DuplicateActiveBooking,
    InvalidTransition,
    StorageError,
    TransientStorageError,
    translate_storage_errors,
)
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


def _violates_active_booking_index(exc: IntegrityError) -> bool:
    # SQLite names the indexed columns, PostgreSQL names the index
    message = str(exc.orig)
    return ACTIVE_BOOKING_INDEX in message or "bookings.room_number, bookings.student_id" in message


@dataclass
class LedgerEvent:
    """
    A status change to record.

    Without ``booking_id`` the event opens a new booking for ``room_number``
    and ``student_id``; the ledger writes the initial ``Pending`` entry and
    then this event's status in the same transaction, and fills in
    ``booking_id`` once that transaction succeeds.
    """

    status: BookingStatus
    booking_id: Optional[int] = None
    room_number: Optional[str] = None
    student_id: Optional[int] = None
    reason: Optional[str] = None
    amount: Optional[float] = None
    recorded_at: datetime = field(default_factory=datetime.utcnow)


class BookingLedger:
    def __init__(self, session: Session):
        self.session = session

    def append(self, event: LedgerEvent, commit: bool = True) -> int:
        """Record ``event`` and move the booking's status with it. Returns the event id."""
        try:
            if event.booking_id is None:
                entry = self._open(event)
            else:
                entry = self._transition(event)
            entry_id, booking_id = entry.id, entry.booking_id
            if commit:
                self.session.commit()
            event.booking_id = booking_id
        except IntegrityError as exc:
            self.session.rollback()
            if not _violates_active_booking_index(exc):
                logger.error(f"Integrity violation recording {event.status} for booking {event.booking_id}: {exc.orig}")
                raise StorageError(str(exc.orig)) from exc
            raise DuplicateActiveBooking(
                f"Student {event.student_id} already holds room {event.room_number}"
            ) from exc
        except DBAPIError as exc:
            self.session.rollback()
            raise TransientStorageError(str(exc.orig)) from exc
        except (InvalidTransition, BookingNotFound):
            self.session.rollback()
            raise
        return entry_id

    def _open(self, event: LedgerEvent) -> BookingEvent:
        status = BookingStatus(event.status)
        if status != BookingStatus.PENDING and not can_transition(BookingStatus.PENDING, status):
            raise InvalidTransition(f"A new booking cannot start as {status.value}")
        booking = Booking(
            room_number=event.room_number,
            student_id=event.student_id,
            requested_at=event.recorded_at,
            status=status.value,
            amount=event.amount,
            payment_status=PaymentStatus.UNPAID.value,
        )
        if status != BookingStatus.PENDING:
            booking.resolved_at = event.recorded_at
        self.session.add(booking)
        self.session.flush()
        opened = BookingEvent(
            booking_id=booking.id,
            status=BookingStatus.PENDING.value,
            recorded_at=event.recorded_at,
        )
        self.session.add(opened)
        if status == BookingStatus.PENDING:
            self.session.flush()
            return opened
        return self._record(booking.id, status, event)

    def _transition(self, event: LedgerEvent) -> BookingEvent:
        status = BookingStatus(event.status)
        sources = [source.value for source, targets in TRANSITIONS.items() if status in targets]
        values = {Booking.status: status.value, Booking.resolved_at: event.recorded_at}
        if status == BookingStatus.CANCELLED:
            values[Booking.cancellation_reason] = event.reason
        if status == BookingStatus.CONFIRMED and event.amount is not None:
            values[Booking.amount] = event.amount
        # Conditional on the current status so two racing transitions cannot both apply
        moved = (
            self.session.query(Booking)
            .filter(Booking.id == event.booking_id, Booking.status.in_(sources))
            .update(values, synchronize_session=False)
        )
        if not moved:
            current = self.session.query(Booking.status).filter(Booking.id == event.booking_id).first()
            if current is None:
                raise BookingNotFound(event.booking_id)
            raise InvalidTransition(
                f"Booking {event.booking_id} cannot move from {current.status} to {status.value}"
            )
        return self._record(event.booking_id, status, event)

    def _record(self, booking_id: int, status: BookingStatus, event: LedgerEvent) -> BookingEvent:
        entry = BookingEvent(
            booking_id=booking_id,
            status=status.value,
            reason=event.reason,
            recorded_at=event.recorded_at,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def mark_paid(self, booking_id: int, commit: bool = True) -> Booking:
        """Settle a confirmed booking. Capacity is not touched."""
        now = datetime.utcnow()
        try:
            settled = (
                self.session.query(Booking)
                .filter(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.CONFIRMED.value,
                    Booking.payment_status == PaymentStatus.UNPAID.value,
                )
                .update(
                    {Booking.payment_status: PaymentStatus.PAID.value, Booking.paid_at: now},
                    synchronize_session=False,
                )
            )
            if not settled:
                booking = self.session.query(Booking).filter(Booking.id == booking_id).first()
                if booking is None:
                    raise BookingNotFound(booking_id)
                raise InvalidTransition(
                    f"Booking {booking_id} is {booking.status}/{booking.payment_status}; payment not applicable"
                )
            self.session.add(BookingEvent(
                booking_id=booking_id,
                status=BookingStatus.CONFIRMED.value,
                reason="payment confirmed",
                recorded_at=now,
            ))
            if commit:
                self.session.commit()
        except DBAPIError as exc:
            self.session.rollback()
            raise TransientStorageError(str(exc.orig)) from exc
        except (InvalidTransition, BookingNotFound):
            self.session.rollback()
            raise
        return self.get(booking_id)

    @translate_storage_errors
    def get(self, booking_id: int) -> Optional[Booking]:
        return self.session.get(Booking, booking_id, populate_existing=True)

    @translate_storage_errors
    def list_by_room(self, room_number: str) -> List[Booking]:
        return (
            self.session.query(Booking)
            .filter(Booking.room_number == room_number)
            .order_by(Booking.id)
            .populate_existing()
            .all()
        )

    @translate_storage_errors
    def list_by_student(self, student_id: int) -> List[Booking]:
        return (
            self.session.query(Booking)
            .filter(Booking.student_id == student_id)
            .order_by(Booking.id)
            .populate_existing()
            .all()
        )

    @translate_storage_errors
    def list_by_status(self, status: BookingStatus, skip: int = 0, limit: int = 100) -> List[Booking]:
        return (
            self.session.query(Booking)
            .filter(Booking.status == BookingStatus(status).value)
            .order_by(Booking.id)
            .offset(skip)
            .limit(limit)
            .populate_existing()
            .all()
        )

    @translate_storage_errors
    def list_cancellations(self, skip: int = 0, limit: int = 100) -> List[Booking]:
        """Cancelled bookings, most recently cancelled first."""
        return (
            self.session.query(Booking)
            .filter(Booking.status == BookingStatus.CANCELLED.value)
            .order_by(Booking.resolved_at.desc(), Booking.id.desc())
            .offset(skip)
            .limit(limit)
            .populate_existing()
            .all()
        )

    @translate_storage_errors
    def list_all(self, skip: int = 0, limit: int = 100) -> List[Booking]:
        return self.session.query(Booking).order_by(Booking.id).offset(skip).limit(limit).populate_existing().all()

    @translate_storage_errors
    def history(self, booking_id: int) -> List[BookingEvent]:
        return (
            self.session.query(BookingEvent)
            .filter(BookingEvent.booking_id == booking_id)
            .order_by(BookingEvent.id)
            .all()
        )

    @translate_storage_errors
    def has_confirmed(self, room_number: str, student_id: int) -> bool:
        found = (
            self.session.query(Booking.id)
            .filter(
                Booking.room_number == room_number,
                Booking.student_id == student_id,
                Booking.status == BookingStatus.CONFIRMED.value,
            )
            .first()
        )
        return found is not None

    @translate_storage_errors
    def count_confirmed(self, room_number: str) -> int:
        return (
            self.session.query(Booking)
            .filter(Booking.room_number == room_number, Booking.status == BookingStatus.CONFIRMED.value)
            .count()
        )

    @translate_storage_errors
    def has_bookings(self, room_number: str) -> bool:
        return self.session.query(Booking.id).filter(Booking.room_number == room_number).first() is not None
