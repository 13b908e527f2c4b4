"""
Trip lifecycle schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional
from schooltrack.app.models.trip_enums import TripState
from schooltrack.app.schemas.attendance import StudentAttendanceResponse


class SelectRouteRequest(BaseModel):
    route_id: int = Field(..., description="Route to run today")


class TripResponse(BaseModel):
    id: int
    vehicle_id: int
    driver_id: int
    route_id: Optional[int]
    service_date: date
    state: TripState
    started_at: Optional[datetime]
    ended_at: Optional[datetime]

    class Config:
        from_attributes = True


class CurrentTripResponse(BaseModel):
    """Today's trip for the driver's vehicle with the route's ledger."""
    trip: Optional[TripResponse]
    students: List[StudentAttendanceResponse] = []


class TripHistoryResponse(BaseModel):
    id: int
    trip_id: int
    route_id: int
    vehicle_id: int
    service_date: date
    started_at: datetime
    ended_at: datetime
    total_students: int
    boarded_count: int
    absent_count: int
    completed_stops: int
    total_stops: int

    class Config:
        from_attributes = True
