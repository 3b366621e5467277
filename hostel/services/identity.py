"""Read-only student profile lookup used for booking eligibility."""

from typing import Optional

from sqlalchemy.orm import Session

from hostel.models.user import User
from hostel.services.errors import translate_storage_errors


class StudentDirectory:
    def __init__(self, session: Session):
        self.session = session

    @translate_storage_errors
    def get_student_profile(self, student_id: int) -> Optional[dict]:
        user = self.session.get(User, student_id)
        if user is None:
            return None
        return {
            "id": user.id,
            "username": user.username,
            "gender": user.gender,
            "role": user.role,
        }
