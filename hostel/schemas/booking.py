from pydantic import BaseModel, ConfigDict, field_validator
from datetime import datetime
from typing import Optional
from hostel.models.booking import BookingStatus, PaymentStatus
from hostel.utils.validation_helpers import validate_reason, validate_room_number


class BookingCreate(BaseModel):
    room_number: str

    @field_validator("room_number")
    @classmethod
    def check_room_number(cls, value):
        return validate_room_number(value)


class BookingCancel(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def check_reason(cls, value):
        return validate_reason(value)


class BookingResponse(BaseModel):
    id: int
    room_number: str
    student_id: int
    requested_at: datetime
    status: BookingStatus
    cancellation_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    amount: Optional[float] = None
    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BookingEventResponse(BaseModel):
    id: int
    booking_id: int
    status: BookingStatus
    reason: Optional[str] = None
    recorded_at: datetime

    model_config = ConfigDict(from_attributes=True)
