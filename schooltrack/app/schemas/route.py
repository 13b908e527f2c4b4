"""
Route and stop read schemas.
"""

from pydantic import BaseModel
from typing import List, Optional


class StopResponse(BaseModel):
    id: int
    route_id: int
    name: str
    address: Optional[str]
    latitude: float
    longitude: float
    sequence_number: int

    class Config:
        from_attributes = True


class RouteResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    is_active: bool

    class Config:
        from_attributes = True


class RouteDetailResponse(RouteResponse):
    """Route with its stops in sequence order."""
    stops: List[StopResponse] = []
