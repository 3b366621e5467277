"""Room inventory: the authoritative occupied counter for every room."""

from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from hostel.models.room import Room
from hostel.services.errors import (
    CapacityBelowOccupancy,
    RoomNotFound,
    TransientStorageError,
    translate_storage_errors,
)
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


class ReserveResult(str, Enum):
    OK = "ok"
    FULL = "full"


class ReleaseResult(str, Enum):
    OK = "ok"
    ALREADY_AT_ZERO = "already_at_zero"


class InventoryStore:
    """
    Reads and mutates Room records.

    Capacity changes are single conditional UPDATE statements whose row count
    decides the outcome, so concurrent callers on separate connections (or
    separate processes) serialize at the database, never in this process.
    Pass ``commit=False`` to enlist a mutation in a caller-owned transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    @translate_storage_errors
    def get_room(self, room_number: str) -> Room:
        room = self.session.get(Room, room_number, populate_existing=True)
        if room is None:
            raise RoomNotFound(room_number)
        return room

    @translate_storage_errors
    def list_rooms(self, room_type: Optional[str] = None, available_only: bool = False,
                   include_retired: bool = False, skip: int = 0, limit: int = 100,
                   hostel: Optional[str] = None) -> List[Room]:
        query = self.session.query(Room)
        if room_type:
            query = query.filter(Room.room_type == room_type)
        if hostel:
            query = query.filter(Room.hostel == hostel)
        if available_only:
            query = query.filter(Room.occupied < Room.capacity)
        if not include_retired:
            query = query.filter(Room.retired.is_(False))
        return query.order_by(Room.number).offset(skip).limit(limit).all()

    def try_reserve(self, room_number: str, commit: bool = True) -> ReserveResult:
        """Claim one place if ``occupied < capacity``; no mutation when full."""
        try:
            claimed = (
                self.session.query(Room)
                .filter(
                    Room.number == room_number,
                    Room.retired.is_(False),
                    Room.occupied < Room.capacity,
                )
                .update({Room.occupied: Room.occupied + 1}, synchronize_session=False)
            )
            if claimed:
                if commit:
                    self.session.commit()
                logger.debug(f"Reserved a place in room {room_number}")
                return ReserveResult.OK
            exists = self.session.query(Room.number).filter(Room.number == room_number).first()
            if commit:
                # nothing changed; end the transaction the UPDATE opened
                self.session.rollback()
        except DBAPIError as exc:
            self._abort(exc)
        if exists is None:
            raise RoomNotFound(room_number)
        logger.debug(f"Room {room_number} is full")
        return ReserveResult.FULL

    def release(self, room_number: str, commit: bool = True) -> ReleaseResult:
        """Return one place to the room, never dropping ``occupied`` below zero."""
        try:
            released = (
                self.session.query(Room)
                .filter(Room.number == room_number, Room.occupied > 0)
                .update({Room.occupied: Room.occupied - 1}, synchronize_session=False)
            )
            if released:
                if commit:
                    self.session.commit()
                logger.debug(f"Released a place in room {room_number}")
                return ReleaseResult.OK
            exists = self.session.query(Room.number).filter(Room.number == room_number).first()
            if commit:
                self.session.rollback()
        except DBAPIError as exc:
            self._abort(exc)
        if exists is None:
            raise RoomNotFound(room_number)
        logger.warning(f"Release on room {room_number} with nothing occupied")
        return ReleaseResult.ALREADY_AT_ZERO

    def create_room(self, **fields) -> Room:
        room = Room(occupied=0, retired=False, **fields)
        self.session.add(room)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        except DBAPIError as exc:
            self._abort(exc)
        self.session.refresh(room)
        return room

    def update_room(self, room_number: str, **changes) -> Room:
        """Apply management edits; a new capacity must still cover held places."""
        capacity = changes.pop("capacity", None)
        try:
            if capacity is not None:
                applied = (
                    self.session.query(Room)
                    .filter(Room.number == room_number, Room.occupied <= capacity)
                    .update({Room.capacity: capacity}, synchronize_session=False)
                )
                if not applied:
                    self.session.rollback()
                    self.get_room(room_number)
                    raise CapacityBelowOccupancy(
                        f"Capacity {capacity} is below current occupancy of room {room_number}"
                    )
            if changes:
                self.session.query(Room).filter(Room.number == room_number).update(
                    changes, synchronize_session=False
                )
            self.session.commit()
        except DBAPIError as exc:
            self._abort(exc)
        return self.get_room(room_number)

    def retire_room(self, room_number: str) -> Room:
        return self.update_room(room_number, retired=True)

    def delete_room(self, room_number: str) -> None:
        room = self.get_room(room_number)
        self.session.delete(room)
        try:
            self.session.commit()
        except DBAPIError as exc:
            self._abort(exc)

    def _abort(self, exc: DBAPIError):
        self.session.rollback()
        raise TransientStorageError(str(exc.orig)) from exc
