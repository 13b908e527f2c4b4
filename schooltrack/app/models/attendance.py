"""
Attendance record database model.

Single normalized boarding ledger keyed by (student, service date).
"""

from sqlalchemy import Column, Integer, Date, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base
from schooltrack.app.models.trip_enums import AttendanceStatus


class AttendanceRecord(Base):
    """
    Attendance record.

    Status only moves forward (see trip_enums.ATTENDANCE_TRANSITIONS).
    `marked_by` is the user that performed the last transition.
    """
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    student_id = Column(Integer, ForeignKey('students.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    stop_id = Column(Integer, ForeignKey('stops.id'), nullable=True)
    service_date = Column(Date, nullable=False, index=True)

    status = Column(Enum(AttendanceStatus), default=AttendanceStatus.WAITING, nullable=False, index=True)

    marked_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    marked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('student_id', 'service_date', name='uq_attendance_student_date'),
    )

    def __repr__(self):
        return f"<AttendanceRecord(student_id={self.student_id}, date={self.service_date}, status='{self.status.value}')>"
