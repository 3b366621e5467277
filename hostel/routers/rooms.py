from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
from hostel.schemas.booking import BookingResponse
from hostel.schemas.room import RoomCreate, RoomUpdate, RoomResponse, RoomStatusResponse
from hostel.services.errors import CapacityBelowOccupancy, RoomNotFound, TransientStorageError
from hostel.services.inventory import InventoryStore
from hostel.services.ledger import BookingLedger
from hostel.services.projector import OccupancyProjector
from hostel.utils.auth import require_manager
from hostel.utils.dependencies import get_inventory, get_ledger, get_projector
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(
    prefix="/rooms",
    tags=["rooms"],
)


def storage_unavailable(exc: TransientStorageError) -> HTTPException:
    logger.error(f"Storage unavailable: {exc}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable, please try again")


def load_room(inventory: InventoryStore, room_number: str):
    try:
        return inventory.get_room(room_number.upper())
    except RoomNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    except TransientStorageError as exc:
        raise storage_unavailable(exc)


@router.post("/", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
def create_room(
    room: RoomCreate,
    inventory: InventoryStore = Depends(get_inventory),
    projector: OccupancyProjector = Depends(get_projector),
    current_user: dict = Depends(require_manager),
):
    """
    Add a room to the hostel inventory.
    Requires a manager account.
    """
    try:
        inventory.get_room(room.number)
    except RoomNotFound:
        pass
    except TransientStorageError as exc:
        raise storage_unavailable(exc)
    else:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room number already exists")

    fields = room.model_dump()
    fields["gender"] = room.gender.value if room.gender else None
    try:
        db_room = inventory.create_room(**fields)
    except IntegrityError:
        # created concurrently by another request
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room number already exists")
    except TransientStorageError as exc:
        raise storage_unavailable(exc)
    projector.invalidate()
    logger.info(f"Room {db_room.number} created by {current_user['username']}")
    return db_room


@router.get("/", response_model=List[RoomResponse])
def get_rooms(
    room_type: Optional[str] = None,
    hostel: Optional[str] = None,
    available_only: bool = False,
    skip: int = 0,
    limit: int = 100,
    inventory: InventoryStore = Depends(get_inventory),
):
    """
    List bookable rooms, optionally filtered by hostel, type or free places.
    """
    return inventory.list_rooms(
        room_type=room_type, hostel=hostel, available_only=available_only, skip=skip, limit=limit
    )


@router.get("/{room_number}", response_model=RoomResponse)
def get_room(room_number: str, inventory: InventoryStore = Depends(get_inventory)):
    return load_room(inventory, room_number)


@router.get("/{room_number}/status", response_model=RoomStatusResponse)
def get_room_status(room_number: str, inventory: InventoryStore = Depends(get_inventory)):
    """
    Available while occupied < capacity, Occupied otherwise.
    """
    return load_room(inventory, room_number)


@router.get("/{room_number}/bookings", response_model=List[BookingResponse])
def get_room_bookings(
    room_number: str,
    inventory: InventoryStore = Depends(get_inventory),
    ledger: BookingLedger = Depends(get_ledger),
    current_user: dict = Depends(require_manager),
):
    """
    Every booking ever made for the room, oldest first.
    Requires a manager account.
    """
    room = load_room(inventory, room_number)
    return ledger.list_by_room(room.number)


@router.put("/{room_number}", response_model=RoomResponse)
def update_room(
    room_number: str,
    room_update: RoomUpdate,
    inventory: InventoryStore = Depends(get_inventory),
    projector: OccupancyProjector = Depends(get_projector),
    current_user: dict = Depends(require_manager),
):
    """
    Edit room details. Capacity cannot drop below the places already held.
    Requires a manager account.
    """
    room = load_room(inventory, room_number)
    update_data = room_update.model_dump(exclude_unset=True)
    if "gender" in update_data and update_data["gender"] is not None:
        update_data["gender"] = update_data["gender"].value
    try:
        db_room = inventory.update_room(room.number, **update_data)
    except CapacityBelowOccupancy as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except TransientStorageError as exc:
        raise storage_unavailable(exc)
    projector.invalidate()
    logger.info(f"Room {room.number} updated by {current_user['username']}: {sorted(update_data)}")
    return db_room


@router.delete("/{room_number}", status_code=status.HTTP_204_NO_CONTENT)
def delete_room(
    room_number: str,
    inventory: InventoryStore = Depends(get_inventory),
    ledger: BookingLedger = Depends(get_ledger),
    projector: OccupancyProjector = Depends(get_projector),
    current_user: dict = Depends(require_manager),
):
    """
    Remove a room. Rooms referenced by any booking are retired instead so
    their ledger history stays intact.
    Requires a manager account.
    """
    room = load_room(inventory, room_number)
    try:
        if ledger.has_bookings(room.number):
            inventory.retire_room(room.number)
            logger.info(f"Room {room.number} retired by {current_user['username']}")
        else:
            inventory.delete_room(room.number)
            logger.info(f"Room {room.number} deleted by {current_user['username']}")
    except TransientStorageError as exc:
        raise storage_unavailable(exc)
    projector.invalidate()
    return None
