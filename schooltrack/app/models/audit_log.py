"""
Audit Log Database Model.

Activity trail for login events and trip operations (who started a trip,
who marked a student boarded, which stop events were registered).
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base


class AuditLog(Base):
    """
    Audit log entry.

    Events logged:
    - LOGIN_SUCCESS / LOGIN_FAILED / LOGOUT
    - VEHICLE_REGISTERED / TRACKING_TOGGLED
    - ROUTE_SELECTED / TRIP_STARTED / TRIP_COMPLETED
    - STUDENT_PRESENT / STUDENT_BOARDED
    - STOP_ARRIVAL / STOP_DEPARTURE
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username})>"
