from datetime import datetime
from typing import Dict, List
from pydantic import BaseModel, ConfigDict


class TypeOccupancyResponse(BaseModel):
    room_type: str
    occupied: int
    total: int
    occupancy_rate: float

    model_config = ConfigDict(from_attributes=True)


class OccupancyResponse(BaseModel):
    entries: List[TypeOccupancyResponse]
    occupied: int
    total: int
    generated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DiscrepancyResponse(BaseModel):
    room_number: str
    occupied: int
    confirmed: int

    model_config = ConfigDict(from_attributes=True)


class ReconcileResponse(BaseModel):
    drift: Dict[str, int]
    discrepancies: List[DiscrepancyResponse]
    occupancy: OccupancyResponse
