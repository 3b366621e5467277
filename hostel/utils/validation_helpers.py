import re
from fastapi import HTTPException, status


ROOM_NUMBER_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9-]{0,15}$")


def validate_room_number(value):
    if value is None:
        return value
    normalized = value.strip().upper()
    if not ROOM_NUMBER_PATTERN.match(normalized):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Room number must be letters, digits or dashes (e.g., A101)",
        )
    return normalized


def validate_reason(value):
    if value is None:
        return value
    reason = value.strip()
    if not reason:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A cancellation reason is required",
        )
    return reason
