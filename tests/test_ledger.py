import pytest
from sqlalchemy.exc import IntegrityError

from hostel.models.booking import BookingStatus
from hostel.services.errors import (
    BookingNotFound,
    CapacityBelowOccupancy,
    DuplicateActiveBooking,
    InvalidTransition,
    RoomNotFound,
    StorageError,
)
from hostel.services.inventory import InventoryStore, ReleaseResult, ReserveResult
from hostel.services.ledger import BookingLedger, LedgerEvent

from tests.conf_tests import clear_db, test_db, make_room


def confirm(ledger, room_number, student_id):
    event = LedgerEvent(status=BookingStatus.CONFIRMED, room_number=room_number, student_id=student_id)
    ledger.append(event)
    return event.booking_id


def test_try_reserve_stops_at_capacity(test_db):
    make_room(test_db, number="A101", capacity=2)
    inventory = InventoryStore(test_db)

    assert inventory.try_reserve("A101") == ReserveResult.OK
    assert inventory.try_reserve("A101") == ReserveResult.OK
    assert inventory.try_reserve("A101") == ReserveResult.FULL
    assert inventory.get_room("A101").occupied == 2


def test_release_clamps_at_zero(test_db):
    make_room(test_db, number="A101", capacity=1)
    inventory = InventoryStore(test_db)
    inventory.try_reserve("A101")

    assert inventory.release("A101") == ReleaseResult.OK
    assert inventory.release("A101") == ReleaseResult.ALREADY_AT_ZERO
    assert inventory.get_room("A101").occupied == 0


def test_unknown_room(test_db):
    inventory = InventoryStore(test_db)
    with pytest.raises(RoomNotFound):
        inventory.get_room("Z999")
    with pytest.raises(RoomNotFound):
        inventory.try_reserve("Z999")
    with pytest.raises(RoomNotFound):
        inventory.release("Z999")


def test_capacity_edit_cannot_strand_occupants(test_db):
    make_room(test_db, number="C301", capacity=4)
    inventory = InventoryStore(test_db)
    for _ in range(3):
        inventory.try_reserve("C301")

    with pytest.raises(CapacityBelowOccupancy):
        inventory.update_room("C301", capacity=2)
    assert inventory.update_room("C301", capacity=3, price=3000.0).capacity == 3


def test_new_booking_history_starts_pending(test_db):
    make_room(test_db, number="A101", capacity=1)
    ledger = BookingLedger(test_db)

    booking_id = confirm(ledger, "A101", 1)

    assert ledger.get(booking_id).status == BookingStatus.CONFIRMED.value
    assert [event.status for event in ledger.history(booking_id)] == ["Pending", "Confirmed"]


def test_transitions_follow_state_machine(test_db):
    make_room(test_db, number="A101", capacity=1)
    ledger = BookingLedger(test_db)
    booking_id = confirm(ledger, "A101", 1)

    with pytest.raises(InvalidTransition):
        ledger.append(LedgerEvent(status=BookingStatus.PENDING, booking_id=booking_id))

    ledger.append(LedgerEvent(status=BookingStatus.CANCELLED, booking_id=booking_id, reason="moving out"))
    booking = ledger.get(booking_id)
    assert booking.status == BookingStatus.CANCELLED.value
    assert booking.cancellation_reason == "moving out"

    for terminal_move in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingStatus.CANCELLED):
        with pytest.raises(InvalidTransition):
            ledger.append(LedgerEvent(status=terminal_move, booking_id=booking_id))
    assert [event.status for event in ledger.history(booking_id)] == ["Pending", "Confirmed", "Cancelled"]


def test_new_booking_cannot_start_terminal(test_db):
    ledger = BookingLedger(test_db)
    with pytest.raises(InvalidTransition):
        ledger.append(LedgerEvent(status=BookingStatus.CANCELLED, room_number="A101", student_id=1))


def test_transition_of_unknown_booking(test_db):
    with pytest.raises(BookingNotFound):
        BookingLedger(test_db).append(LedgerEvent(status=BookingStatus.CANCELLED, booking_id=404))


def test_one_confirmed_booking_per_student_and_room(test_db):
    make_room(test_db, number="B201", capacity=2)
    ledger = BookingLedger(test_db)
    first = confirm(ledger, "B201", 1)

    with pytest.raises(DuplicateActiveBooking):
        confirm(ledger, "B201", 1)

    ledger.append(LedgerEvent(status=BookingStatus.CANCELLED, booking_id=first, reason="rebooking"))
    assert confirm(ledger, "B201", 1) != first
    assert ledger.count_confirmed("B201") == 1


def test_queries_by_room_student_and_status(test_db):
    make_room(test_db, number="A101", capacity=1)
    make_room(test_db, number="B201", capacity=2)
    ledger = BookingLedger(test_db)
    a = confirm(ledger, "A101", 1)
    b = confirm(ledger, "B201", 1)
    c = confirm(ledger, "B201", 2)
    ledger.append(LedgerEvent(status=BookingStatus.REJECTED, room_number="A101", student_id=2, reason="NoCapacity"))

    assert [booking.id for booking in ledger.list_by_room("B201")] == [b, c]
    assert [booking.id for booking in ledger.list_by_student(1)] == [a, b]
    assert [booking.room_number for booking in ledger.list_by_status(BookingStatus.REJECTED)] == ["A101"]
    assert ledger.has_confirmed("B201", 2)
    assert not ledger.has_confirmed("A101", 2)


def test_other_integrity_failures_are_not_duplicates(test_db, monkeypatch):
    make_room(test_db, number="A101", capacity=1)
    ledger = BookingLedger(test_db)

    def missing_student(self, event):
        raise IntegrityError("INSERT INTO bookings", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(BookingLedger, "_open", missing_student)
    with pytest.raises(StorageError) as caught:
        confirm(ledger, "A101", 404)
    assert not isinstance(caught.value, DuplicateActiveBooking)
