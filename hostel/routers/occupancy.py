from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from hostel.schemas.occupancy import OccupancyResponse, ReconcileResponse
from hostel.services.coordinator import ReservationCoordinator
from hostel.services.errors import TransientStorageError
from hostel.services.projector import OccupancyProjector, OccupancyView
from hostel.utils.auth import require_manager
from hostel.utils.dependencies import get_coordinator, get_projector
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(
    prefix="/occupancy",
    tags=["occupancy"],
)


def view_response(view: OccupancyView) -> dict:
    return {
        "entries": [
            {
                "room_type": entry.room_type,
                "occupied": entry.occupied,
                "total": entry.total,
                "occupancy_rate": entry.occupancy_rate,
            }
            for entry in view.entries
        ],
        "occupied": view.occupied,
        "total": view.total,
        "generated_at": view.generated_at,
    }


@router.get("/", response_model=OccupancyResponse)
def get_occupancy(
    room_type: Optional[str] = None,
    projector: OccupancyProjector = Depends(get_projector),
):
    """
    Occupied and total places per room type, from the dashboard cache.
    """
    return view_response(projector.get_occupancy(room_type))


@router.post("/reconcile", response_model=ReconcileResponse)
def reconcile_occupancy(
    projector: OccupancyProjector = Depends(get_projector),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    current_user: dict = Depends(require_manager),
):
    """
    Rebuild the occupancy cache and list rooms whose occupied counter
    disagrees with their confirmed bookings.
    Requires a manager account.
    """
    try:
        discrepancies = coordinator.audit()
    except TransientStorageError as exc:
        logger.error(f"Audit failed: {exc}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable, please try again")
    drift = projector.reconcile()
    logger.info(f"Reconciliation by {current_user['username']}: drift={drift}, discrepancies={len(discrepancies)}")
    return {
        "drift": drift,
        "discrepancies": discrepancies,
        "occupancy": view_response(projector.get_occupancy()),
    }
