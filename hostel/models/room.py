from datetime import datetime
from enum import Enum
from sqlalchemy.orm import relationship
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, Integer, String
from hostel.db import Base


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNISEX = "unisex"


class RoomStatus(str, Enum):
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"


class Room(Base):
    __tablename__ = "rooms"

    number = Column(String, primary_key=True, index=True)
    room_type = Column(String, index=True, nullable=False)
    hostel = Column(String, nullable=True)
    capacity = Column(Integer, nullable=False)
    occupied = Column(Integer, nullable=False, default=0)
    price = Column(Float, nullable=False)
    gender = Column(String, nullable=True)
    retired = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    bookings = relationship("Booking", back_populates="room")

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="check_room_capacity_positive"),
        CheckConstraint("occupied >= 0", name="check_room_occupied_non_negative"),
        CheckConstraint("occupied <= capacity", name="check_room_occupied_lte_capacity"),
    )

    @property
    def status(self) -> RoomStatus:
        if self.occupied < self.capacity:
            return RoomStatus.AVAILABLE
        return RoomStatus.OCCUPIED

    @property
    def available(self) -> int:
        return self.capacity - self.occupied

    def admits(self, gender) -> bool:
        """Whether a student of the given gender may book this room."""
        if self.gender in (None, Gender.UNISEX.value):
            return True
        if gender is None:
            return False
        return str(getattr(gender, "value", gender)).lower() == self.gender

    def __repr__(self) -> str:
        return f"<Room(number={self.number}, occupied={self.occupied}/{self.capacity})>"
