from datetime import datetime
from enum import Enum
from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
from hostel.db import Base


class BookingStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"


# Allowed status moves; anything missing here is terminal.
TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.REJECTED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED},
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS.get(BookingStatus(current), set())


_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in BookingStatus)
_ACTIVE = text("status = 'Confirmed'")
ACTIVE_BOOKING_INDEX = "uq_active_booking_per_student"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String, ForeignKey("rooms.number"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    cancellation_reason = Column(String, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    amount = Column(Float, nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value)
    paid_at = Column(DateTime, nullable=True)

    room = relationship("Room", back_populates="bookings")
    student = relationship("User", back_populates="bookings")
    events = relationship("BookingEvent", back_populates="booking", order_by="BookingEvent.id")

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="check_booking_status"),
        # One active booking per student per room
        Index(
            ACTIVE_BOOKING_INDEX,
            "room_number",
            "student_id",
            unique=True,
            sqlite_where=_ACTIVE,
            postgresql_where=_ACTIVE,
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, room={self.room_number}, student={self.student_id}, status={self.status})>"


class BookingEvent(Base):
    """Append-only ledger entry; a booking's history is its events ordered by id."""

    __tablename__ = "booking_events"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    reason = Column(String, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    booking = relationship("Booking", back_populates="events")
