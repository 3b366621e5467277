from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Literal, Optional
from hostel.models.user import Role


class UserCreate(BaseModel):
    username: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    gender: Optional[Literal["male", "female"]] = None
    role: Role = Role.STUDENT


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    gender: Optional[str] = None
    role: Role

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
