"""Occupancy projector: cached per-room-type aggregates for dashboards."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from hostel import config
from hostel.models.room import Room
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class TypeOccupancy:
    room_type: str
    occupied: int
    total: int

    @property
    def occupancy_rate(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(100.0 * self.occupied / self.total, 1)


@dataclass(frozen=True)
class OccupancyView:
    entries: List[TypeOccupancy]
    generated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def occupied(self) -> int:
        return sum(entry.occupied for entry in self.entries)

    @property
    def total(self) -> int:
        return sum(entry.total for entry in self.entries)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {entry.room_type: {"occupied": entry.occupied, "total": entry.total} for entry in self.entries}


class OccupancyProjector:
    """
    Keeps ``{room_type: [occupied, total]}`` in memory.

    The cache is derived data only: ``recompute`` rebuilds it from the rooms
    table, ``on_room_changed`` nudges it between rebuilds, and any read older
    than ``reconcile_seconds`` triggers a rebuild to absorb missed deltas.

    Writers read ``generation`` before mutating a room and hand it back with
    the change. A rebuild moves the generation, so a change that straddles a
    rebuild invalidates the cache instead of being counted twice. A change
    applied while a rebuild is reading the table marks that rebuild stale.
    """

    def __init__(self, session_factory: Callable[[], Session],
                 reconcile_seconds: float = config.OCCUPANCY_RECONCILE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._session_factory = session_factory
        self._reconcile_seconds = reconcile_seconds
        self._clock = clock
        self._lock = RLock()
        self._counts: Dict[str, List[int]] = {}
        self._room_types: Dict[str, str] = {}
        self._built_at: Optional[float] = None
        self._generation = 0
        self._changes = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def _aggregate(self, room_type: Optional[str] = None):
        session = self._session_factory()
        try:
            query = session.query(
                Room.room_type,
                func.coalesce(func.sum(Room.occupied), 0),
                func.coalesce(func.sum(Room.capacity), 0),
            )
            rooms = session.query(Room.number, Room.room_type)
            if room_type is not None:
                query = query.filter(Room.room_type == room_type)
                rooms = rooms.filter(Room.room_type == room_type)
            counts = {
                str(kind): [int(occupied), int(total)]
                for kind, occupied, total in query.group_by(Room.room_type).all()
            }
            room_types = {number: kind for number, kind in rooms.all()}
        finally:
            session.close()
        return counts, room_types

    def recompute(self, room_type: Optional[str] = None) -> OccupancyView:
        """Full rebuild from the inventory, optionally limited to one room type."""
        with self._lock:
            self._generation += 1
            started = (self._generation, self._changes)
        counts, room_types = self._aggregate(room_type)
        with self._lock:
            raced = (self._generation, self._changes) != started
            if room_type is None:
                self._counts = counts
                self._room_types = room_types
                self._built_at = None if raced else self._clock()
            else:
                self._counts.pop(room_type, None)
                self._counts.update(counts)
                for number in [n for n, kind in self._room_types.items() if kind == room_type]:
                    del self._room_types[number]
                self._room_types.update(room_types)
                if raced:
                    self._built_at = None
            self._generation += 1
            if raced:
                logger.debug("Occupancy changed during rebuild; cache marked stale")
            logger.debug(f"Occupancy recomputed for {room_type or 'all room types'}")
            return self._view(room_type)

    def on_room_changed(self, room_number: str, delta: int, generation: Optional[int] = None) -> None:
        """
        Apply a +1/-1 change in a room's occupied count to its type's aggregate.

        ``generation`` is the value of :attr:`generation` read before the room
        was mutated; when a rebuild has happened since, the cache is dropped.
        """
        with self._lock:
            if self._built_at is None:
                self._changes += 1
                return
            if generation is not None and generation != self._generation:
                logger.debug(f"Occupancy change for room {room_number} crossed a rebuild; cache dropped")
                self._invalidate()
                return
            room_type = self._room_types.get(room_number)
        if room_type is None:
            session = self._session_factory()
            try:
                room_type = session.query(Room.room_type).filter(Room.number == room_number).scalar()
            finally:
                session.close()
            if room_type is None:
                logger.warning(f"Occupancy update for unknown room {room_number} ignored")
                return
        with self._lock:
            self._changes += 1
            if generation is not None and generation != self._generation:
                self._invalidate()
                return
            if self._built_at is None or room_type not in self._counts:
                # first room of this type since the last rebuild; the next rebuild picks it up
                self._invalidate()
                return
            self._room_types[room_number] = room_type
            entry = self._counts[room_type]
            entry[0] = min(max(entry[0] + delta, 0), entry[1])

    def invalidate(self) -> None:
        """Drop the cache; the next read rebuilds it."""
        with self._lock:
            self._invalidate()

    def _invalidate(self) -> None:
        self._built_at = None
        self._generation += 1

    def get_occupancy(self, room_type: Optional[str] = None) -> OccupancyView:
        with self._lock:
            fresh = (
                self._built_at is not None
                and self._clock() - self._built_at < self._reconcile_seconds
            )
            if fresh:
                return self._view(room_type)
        self.recompute()
        with self._lock:
            return self._view(room_type)

    def reconcile(self) -> Dict[str, int]:
        """Rebuild the cache and report per-type drift of the cached occupied counts."""
        with self._lock:
            before = {kind: entry[0] for kind, entry in self._counts.items()}
        after = self.recompute()
        drift = {}
        for entry in after.entries:
            difference = before.get(entry.room_type, 0) - entry.occupied
            if difference:
                drift[entry.room_type] = difference
        if drift:
            logger.warning(f"Occupancy cache drift corrected: {drift}")
        return drift

    def _view(self, room_type: Optional[str] = None) -> OccupancyView:
        entries = [
            TypeOccupancy(kind, occupied, total)
            for kind, (occupied, total) in sorted(self._counts.items())
            if room_type is None or kind == room_type
        ]
        return OccupancyView(entries=entries)
