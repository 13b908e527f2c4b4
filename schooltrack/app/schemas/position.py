"""
Position ingest and read schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class PositionSampleCreate(BaseModel):
    """One GPS fix reported by the driver's device."""
    vehicle_id: int
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed: float = Field(0.0, ge=0)
    heading: float = Field(0.0, ge=0, le=360)
    accuracy_meters: Optional[float] = Field(None, gt=0)
    captured_at: Optional[datetime] = None


class PositionSampleResponse(BaseModel):
    id: int
    vehicle_id: int
    latitude: float
    longitude: float
    speed: float
    heading: float
    accuracy_meters: Optional[float]
    captured_at: datetime

    class Config:
        from_attributes = True


class LastKnownPositionResponse(BaseModel):
    vehicle_id: int
    latitude: float
    longitude: float
    speed: float
    heading: float
    captured_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
