"""FastAPI dependency providers for the booking engine."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from hostel.db import SessionLocal, get_db
from hostel.services.coordinator import ReservationCoordinator
from hostel.services.identity import StudentDirectory
from hostel.services.inventory import InventoryStore
from hostel.services.ledger import BookingLedger
from hostel.services.projector import OccupancyProjector


def get_projector(request: Request) -> OccupancyProjector:
    projector = getattr(request.app.state, "projector", None)
    if projector is None:
        projector = OccupancyProjector(SessionLocal)
        request.app.state.projector = projector
    return projector


def get_inventory(db: Session = Depends(get_db)) -> InventoryStore:
    return InventoryStore(db)


def get_ledger(db: Session = Depends(get_db)) -> BookingLedger:
    return BookingLedger(db)


def get_coordinator(
    db: Session = Depends(get_db),
    projector: OccupancyProjector = Depends(get_projector),
) -> ReservationCoordinator:
    """Build a coordinator over the request's session."""
    return ReservationCoordinator(
        inventory=InventoryStore(db),
        ledger=BookingLedger(db),
        projector=projector,
        profile_lookup=StudentDirectory(db).get_student_profile,
    )
