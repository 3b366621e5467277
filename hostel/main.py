from contextlib import asynccontextmanager
from fastapi import FastAPI
from hostel.db import SessionLocal, init_database
from hostel.routers import auth, bookings, occupancy, rooms
from hostel.services.projector import OccupancyProjector


@asynccontextmanager
async def lifespan(app: FastAPI):
    "lifespan for initing database and the occupancy cache"
    init_database()
    app.state.projector = OccupancyProjector(SessionLocal)
    yield


app = FastAPI(
    lifespan=lifespan,
    title="Hostel booker",
    description="Student hostel room inventory and booking engine based on FastAPI.",
    version="0.1.0",
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
)


app.include_router(auth.router)
app.include_router(rooms.router)
app.include_router(bookings.router)
app.include_router(occupancy.router)
