"""
Vehicle registration schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class VehicleRegister(BaseModel):
    """Schema for a driver registering their vehicle."""
    plate: str = Field(..., min_length=1, max_length=20, description="License plate")
    model: Optional[str] = Field(None, max_length=100)
    capacity: int = Field(0, ge=0, description="Seats available for students")


class TrackingToggle(BaseModel):
    tracking_enabled: bool


class VehicleResponse(BaseModel):
    id: int
    driver_id: int
    plate: str
    model: Optional[str]
    capacity: int
    tracking_enabled: bool
    created_at: datetime

    class Config:
        from_attributes = True
