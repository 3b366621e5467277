from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from hostel.models.booking import BookingStatus
from hostel.models.user import Role
from hostel.schemas.booking import BookingCancel, BookingCreate, BookingEventResponse, BookingResponse
from hostel.services.coordinator import CancelFailure, RejectionReason, ReservationCoordinator
from hostel.services.errors import TransientStorageError
from hostel.services.ledger import BookingLedger
from hostel.utils.auth import get_current_user, require_manager
from hostel.utils.dependencies import get_coordinator, get_ledger
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(
    prefix="/bookings",
    tags=["bookings"],
)

REJECTION_RESPONSES = {
    RejectionReason.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Room not found"),
    RejectionReason.NO_CAPACITY: (status.HTTP_409_CONFLICT, "Room is full"),
    RejectionReason.GENDER_MISMATCH: (status.HTTP_403_FORBIDDEN, "You are not eligible for this room"),
    RejectionReason.DUPLICATE_BOOKING: (status.HTTP_409_CONFLICT, "You already hold a booking for this room"),
    RejectionReason.TRANSIENT_ERROR: (status.HTTP_503_SERVICE_UNAVAILABLE, "Please try again"),
}

CANCEL_FAILURE_RESPONSES = {
    CancelFailure.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Booking not found"),
    CancelFailure.INVALID_STATE: (status.HTTP_409_CONFLICT, "Only confirmed bookings can be changed"),
    CancelFailure.TRANSIENT_ERROR: (status.HTTP_503_SERVICE_UNAVAILABLE, "Please try again"),
}


def fail(responses, failure):
    status_code, detail = responses[failure]
    raise HTTPException(status_code=status_code, detail=detail, headers={"X-Booking-Outcome": failure.value})


def fetch_booking(ledger: BookingLedger, booking_id: int):
    try:
        return ledger.get(booking_id)
    except TransientStorageError as exc:
        logger.error(f"Storage unavailable: {exc}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable, please try again"
        )


def load_booking(ledger: BookingLedger, booking_id: int, current_user: dict):
    """Fetch a booking visible to the caller: its owner or any manager."""
    booking = fetch_booking(ledger, booking_id)
    if not booking:
        logger.error(f"Booking not found: {booking_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    if current_user["role"] != Role.MANAGER.value and booking.student_id != current_user["id"]:
        logger.error(f"User {current_user['username']} not authorized for booking {booking_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to access this booking")
    return booking


@router.post(
    "/",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a place in a room",
    description="Reserve one place in a room for the authenticated student.",
)
def create_booking(
    booking: BookingCreate,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(get_current_user),
):
    """
    Reserve one place in a room for the authenticated student.

    - **room_number**: number of the room to book (e.g. A101).

    Returns the confirmed booking. A full room answers 409, a gender-restricted
    room the student may not use answers 403.
    """
    logger.debug(f"Creating booking for user: {current_user['username']}, room: {booking.room_number}")
    result = coordinator.book(booking.room_number, current_user["id"], current_user.get("gender"))
    if not result.confirmed:
        fail(REJECTION_RESPONSES, result.reason)
    return fetch_booking(ledger, result.booking_id)


@router.get(
    "/",
    response_model=List[BookingResponse],
    summary="List bookings",
    description="Paginated bookings across all rooms, optionally by status. Managers only.",
)
def get_bookings(
    booking_status: Optional[BookingStatus] = None,
    skip: int = 0,
    limit: int = 100,
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(require_manager),
):
    if booking_status is not None:
        return ledger.list_by_status(booking_status, skip=skip, limit=limit)
    bookings = ledger.list_all(skip=skip, limit=limit)
    logger.debug(f"Retrieved {len(bookings)} bookings")
    return bookings


@router.get(
    "/mine",
    response_model=List[BookingResponse],
    summary="List my bookings",
)
def get_my_bookings(
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(get_current_user),
):
    """
    The authenticated student's bookings and their payment state, oldest first.
    """
    return ledger.list_by_student(current_user["id"])


@router.get(
    "/cancellations",
    response_model=List[BookingResponse],
    summary="List cancellations",
    description="Cancelled bookings with their reasons, newest first. Managers only.",
)
def get_cancellations(
    skip: int = 0,
    limit: int = 100,
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(require_manager),
):
    return ledger.list_cancellations(skip=skip, limit=limit)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking by ID",
)
def get_booking(
    booking_id: int,
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(get_current_user),
):
    return load_booking(ledger, booking_id, current_user)


@router.get(
    "/{booking_id}/history",
    response_model=List[BookingEventResponse],
    summary="Booking ledger history",
)
def get_booking_history(
    booking_id: int,
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(get_current_user),
):
    """
    Every recorded status change of the booking, in the order it happened.
    """
    load_booking(ledger, booking_id, current_user)
    return ledger.history(booking_id)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel a booking",
    description="Cancel a confirmed booking and free its place. Owner or manager.",
)
def cancel_booking(
    booking_id: int,
    cancellation: BookingCancel,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(get_current_user),
):
    """
    Cancel a confirmed booking.

    - **reason**: why the booking is cancelled (kept in the ledger).
    """
    load_booking(ledger, booking_id, current_user)
    result = coordinator.cancel(booking_id, cancellation.reason)
    if not result.ok:
        fail(CANCEL_FAILURE_RESPONSES, result.failure)
    logger.debug(f"Cancelled booking: {booking_id}")
    return fetch_booking(ledger, booking_id)


@router.post(
    "/{booking_id}/complete",
    response_model=BookingResponse,
    summary="Check a student out",
    description="Mark a confirmed booking completed and free its place. Managers only.",
)
def complete_booking(
    booking_id: int,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(require_manager),
):
    result = coordinator.complete(booking_id)
    if not result.ok:
        fail(CANCEL_FAILURE_RESPONSES, result.failure)
    return fetch_booking(ledger, booking_id)


@router.post(
    "/{booking_id}/payment-confirmed",
    response_model=BookingResponse,
    summary="Record a cleared payment",
    description="Called by the payment flow once funds clear for a confirmed booking. Managers only.",
)
def confirm_payment(
    booking_id: int,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(require_manager),
):
    result = coordinator.on_payment_confirmed(booking_id)
    if not result.ok:
        fail(CANCEL_FAILURE_RESPONSES, result.failure)
    return fetch_booking(ledger, booking_id)
