from enum import Enum
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from hostel.db import Base


class Role(str, Enum):
    STUDENT = "student"
    MANAGER = "manager"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    gender = Column(String, nullable=True)
    role = Column(String, nullable=False, default=Role.STUDENT.value)

    bookings = relationship("Booking", back_populates="student")
