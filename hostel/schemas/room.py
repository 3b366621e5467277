from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from hostel.models.room import Gender, RoomStatus
from hostel.utils.validation_helpers import validate_room_number


class RoomBase(BaseModel):
    room_type: str
    capacity: int = Field(ge=1)
    price: float = Field(gt=0)
    gender: Optional[Gender] = None
    hostel: Optional[str] = None


class RoomCreate(RoomBase):
    number: str

    @field_validator("number")
    @classmethod
    def check_number(cls, value):
        return validate_room_number(value)


class RoomUpdate(BaseModel):
    room_type: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    price: Optional[float] = Field(default=None, gt=0)
    gender: Optional[Gender] = None
    hostel: Optional[str] = None
    retired: Optional[bool] = None


class RoomResponse(RoomBase):
    number: str
    occupied: int
    status: RoomStatus
    retired: bool

    model_config = ConfigDict(from_attributes=True)


class RoomStatusResponse(BaseModel):
    number: str
    status: RoomStatus
    available: int

    model_config = ConfigDict(from_attributes=True)
