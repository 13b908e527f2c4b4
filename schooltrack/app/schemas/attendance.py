"""
Attendance ledger schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional
from schooltrack.app.models.trip_enums import AttendanceStatus


class PresentAtStopRequest(BaseModel):
    stop_id: int = Field(..., description="Stop the student is waiting at")


class AttendanceResponse(BaseModel):
    id: int
    student_id: int
    route_id: int
    stop_id: Optional[int]
    service_date: date
    status: AttendanceStatus
    marked_by: Optional[int]
    marked_at: Optional[datetime]

    class Config:
        from_attributes = True


class AttendanceChangeResponse(BaseModel):
    """Result of a status transition; `changed` is False for a no-op."""
    record: AttendanceResponse
    changed: bool


class StudentAttendanceResponse(AttendanceResponse):
    """Ledger row with the student's name, for the driver's list."""
    student_name: str
