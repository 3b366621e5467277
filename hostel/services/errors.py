"""Exceptions raised by the storage-facing services."""

import functools

from sqlalchemy.exc import DBAPIError


class StorageError(Exception):
    """Base class for inventory and ledger failures."""


class TransientStorageError(StorageError):
    """The store could not be reached or the transaction was aborted; safe to retry."""


class RoomNotFound(StorageError):
    def __init__(self, room_number: str):
        super().__init__(f"Room not found: {room_number}")
        self.room_number = room_number


class BookingNotFound(StorageError):
    def __init__(self, booking_id: int):
        super().__init__(f"Booking not found: {booking_id}")
        self.booking_id = booking_id


class InvalidTransition(StorageError):
    """A booking status change is not allowed from the booking's current status."""


class DuplicateActiveBooking(StorageError):
    """The student already holds a confirmed booking for the room."""


class CapacityBelowOccupancy(StorageError):
    """A capacity edit would drop below the number of held places."""


def translate_storage_errors(method):
    """Roll back and re-raise driver failures of a store method as TransientStorageError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except DBAPIError as exc:
            self.session.rollback()
            raise TransientStorageError(str(exc.orig)) from exc

    return wrapper
