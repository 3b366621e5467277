from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import IntegrityError

from hostel.models.booking import Booking, BookingStatus
from hostel.models.room import Room
from hostel.services.coordinator import CancelFailure, RejectionReason
from hostel.services.errors import StorageError, TransientStorageError
from hostel.services.inventory import InventoryStore
from hostel.services.ledger import BookingLedger

from tests.conf_tests import TestingSessionLocal, clear_db, test_db, make_coordinator, make_room, make_user


def occupied(db, room_number):
    db.expire_all()
    return db.query(Room).filter(Room.number == room_number).one().occupied


def confirmed_count(db, room_number):
    return BookingLedger(db).count_confirmed(room_number)


def book_in_own_session(room_number, student_id, gender="female"):
    db = TestingSessionLocal()
    try:
        return make_coordinator(db).book(room_number, student_id, gender)
    finally:
        db.close()


def test_scenario_single_room_rebooked_after_cancel(test_db):
    make_room(test_db, number="A101", capacity=1)
    first, second = make_user(test_db), make_user(test_db)
    coordinator = make_coordinator(test_db)

    booked = coordinator.book("A101", first.id)
    assert booked.confirmed

    rejected = coordinator.book("A101", second.id)
    assert rejected.reason == RejectionReason.NO_CAPACITY

    assert coordinator.cancel(booked.booking_id, "moving out").ok

    rebooked = coordinator.book("A101", second.id)
    assert rebooked.confirmed
    assert occupied(test_db, "A101") == 1


@pytest.mark.parametrize("capacity,requests", [(1, 6), (3, 12)])
def test_no_oversell_under_concurrent_bookings(test_db, capacity, requests):
    make_room(test_db, number="B201", capacity=capacity)

    with ThreadPoolExecutor(max_workers=requests) as pool:
        results = list(pool.map(lambda student: book_in_own_session("B201", student), range(1, requests + 1)))

    confirmed = [result for result in results if result.confirmed]
    assert len(confirmed) == capacity
    assert all(result.reason == RejectionReason.NO_CAPACITY for result in results if not result.confirmed)
    assert occupied(test_db, "B201") == capacity
    assert confirmed_count(test_db, "B201") == capacity


def test_book_then_cancel_restores_occupancy(test_db):
    room = make_room(test_db, number="C301", capacity=4)
    room.occupied = 2
    test_db.commit()
    coordinator = make_coordinator(test_db)

    result = coordinator.book("C301", 42, "female")
    assert occupied(test_db, "C301") == 3
    assert coordinator.cancel(result.booking_id, "changed plans").ok
    assert occupied(test_db, "C301") == 2


def test_gender_gate_never_mutates(test_db):
    make_room(test_db, number="F101", capacity=2, gender="female")
    student = make_user(test_db, gender="male")
    coordinator = make_coordinator(test_db)

    result = coordinator.book("F101", student.id)

    assert result.reason == RejectionReason.GENDER_MISMATCH
    assert occupied(test_db, "F101") == 0
    assert test_db.query(Booking).count() == 0


def test_unisex_and_unrestricted_rooms_admit_everyone(test_db):
    make_room(test_db, number="U101", capacity=2, gender="unisex")
    make_room(test_db, number="N101", capacity=2)
    coordinator = make_coordinator(test_db)

    assert coordinator.book("U101", 1, "male").confirmed
    assert coordinator.book("N101", 2, None).confirmed


def test_restricted_room_without_known_gender(test_db):
    make_room(test_db, number="M101", capacity=2, gender="male")
    coordinator = make_coordinator(test_db)

    assert coordinator.book("M101", 999).reason == RejectionReason.GENDER_MISMATCH


def test_duplicate_booking_rejected(test_db):
    make_room(test_db, number="D101", capacity=3)
    coordinator = make_coordinator(test_db)

    assert coordinator.book("D101", 7, "male").confirmed
    assert coordinator.book("D101", 7, "male").reason == RejectionReason.DUPLICATE_BOOKING
    assert occupied(test_db, "D101") == 1


def test_unknown_and_retired_rooms(test_db):
    room = make_room(test_db, number="R101", capacity=2)
    room.retired = True
    test_db.commit()
    coordinator = make_coordinator(test_db)

    assert coordinator.book("X000", 1, "male").reason == RejectionReason.NOT_FOUND
    assert coordinator.book("R101", 1, "male").reason == RejectionReason.NOT_FOUND
    assert occupied(test_db, "R101") == 0


def test_failed_ledger_append_releases_capacity(test_db, monkeypatch):
    make_room(test_db, number="E101", capacity=2)
    coordinator = make_coordinator(test_db)

    def unavailable(self, event, commit=True):
        raise TransientStorageError("database is locked")

    monkeypatch.setattr(BookingLedger, "append", unavailable)
    result = coordinator.book("E101", 3, "female")

    assert result.reason == RejectionReason.TRANSIENT_ERROR
    assert occupied(test_db, "E101") == 0


def test_transient_failures_are_retried(test_db, monkeypatch):
    make_room(test_db, number="E102", capacity=1)
    delays = []
    coordinator = make_coordinator(test_db, max_attempts=3, backoff_seconds=0.1, sleep=delays.append)
    real_reserve = InventoryStore.try_reserve
    failures = iter([True, True])

    def flaky(self, room_number, commit=True):
        if next(failures, False):
            raise TransientStorageError("disk I/O error")
        return real_reserve(self, room_number, commit)

    monkeypatch.setattr(InventoryStore, "try_reserve", flaky)
    result = coordinator.book("E102", 5, "male")

    assert result.confirmed
    assert delays == [0.1, 0.2]
    assert occupied(test_db, "E102") == 1


def test_no_phantom_capacity_with_injected_failures(test_db, monkeypatch):
    make_room(test_db, number="P101", capacity=3)
    coordinator = make_coordinator(test_db, max_attempts=1)
    real_append = BookingLedger.append
    failing = {"on": False}

    def sometimes(self, event, commit=True):
        if failing["on"]:
            raise TransientStorageError("connection reset")
        return real_append(self, event, commit)

    monkeypatch.setattr(BookingLedger, "append", sometimes)

    kept = []
    for student in range(1, 9):
        failing["on"] = student % 3 == 0
        result = coordinator.book("P101", student, "male")
        if result.confirmed:
            kept.append(result.booking_id)
        assert occupied(test_db, "P101") == confirmed_count(test_db, "P101")

    failing["on"] = True
    assert coordinator.cancel(kept[0], "leaving").failure == CancelFailure.TRANSIENT_ERROR
    assert occupied(test_db, "P101") == confirmed_count(test_db, "P101")

    failing["on"] = False
    assert coordinator.cancel(kept[0], "leaving").ok
    assert occupied(test_db, "P101") == confirmed_count(test_db, "P101") == len(kept) - 1
    assert coordinator.audit() == []


def test_cancel_invalid_states(test_db):
    make_room(test_db, number="G101", capacity=1)
    coordinator = make_coordinator(test_db)
    held = coordinator.book("G101", 1, "male")
    coordinator.book("G101", 2, "male")
    rejected = BookingLedger(test_db).list_by_student(2)[0]

    assert coordinator.cancel(999, "nothing").failure == CancelFailure.NOT_FOUND
    assert coordinator.cancel(rejected.id, "nope").failure == CancelFailure.INVALID_STATE
    assert coordinator.complete(held.booking_id).ok
    assert coordinator.cancel(held.booking_id, "too late").failure == CancelFailure.INVALID_STATE
    assert occupied(test_db, "G101") == 0


def test_payment_confirmation(test_db):
    make_room(test_db, number="H101", capacity=1, price=4200.0)
    coordinator = make_coordinator(test_db)
    booking_id = coordinator.book("H101", 1, "male").booking_id

    assert coordinator.on_payment_confirmed(booking_id).ok
    booking = BookingLedger(test_db).get(booking_id)
    assert booking.payment_status == "Paid"
    assert booking.amount == 4200.0
    assert booking.status == BookingStatus.CONFIRMED.value
    assert occupied(test_db, "H101") == 1

    assert coordinator.on_payment_confirmed(booking_id).failure == CancelFailure.INVALID_STATE
    assert coordinator.on_payment_confirmed(12345).failure == CancelFailure.NOT_FOUND


def test_audit_reports_drift(test_db):
    room = make_room(test_db, number="K101", capacity=2)
    make_coordinator(test_db).book("K101", 1, "male")
    room = test_db.query(Room).filter(Room.number == "K101").one()
    room.occupied = 2
    test_db.commit()

    discrepancies = make_coordinator(test_db).audit()

    assert [(d.room_number, d.occupied, d.confirmed) for d in discrepancies] == [("K101", 2, 1)]


def test_unexpected_ledger_failure_still_releases_capacity(test_db, monkeypatch):
    make_room(test_db, number="L101", capacity=2)
    coordinator = make_coordinator(test_db)

    def missing_student(self, event):
        raise IntegrityError("INSERT INTO bookings", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(BookingLedger, "_open", missing_student)
    with pytest.raises(StorageError):
        coordinator.book("L101", 404, "female")
    assert occupied(test_db, "L101") == 0
