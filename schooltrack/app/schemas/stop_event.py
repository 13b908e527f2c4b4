"""
Stop event schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from schooltrack.app.models.trip_enums import StopEventStatus


class StopEventCreate(BaseModel):
    vehicle_id: int


class StopEventResponse(BaseModel):
    id: int
    stop_id: int
    vehicle_id: int
    route_id: int
    status: StopEventStatus
    occurred_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
