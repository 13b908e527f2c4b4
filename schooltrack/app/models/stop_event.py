"""
Stop event database model.

Arrival/departure markers visible only until `expires_at`.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, Index
from schooltrack.app.db.session import Base
from schooltrack.app.models.trip_enums import StopEventStatus


class StopEvent(Base):
    """
    Stop event.

    `expires_at = occurred_at + TTL`; readers must filter on it.
    """
    __tablename__ = "stop_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    stop_id = Column(Integer, ForeignKey('stops.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)

    status = Column(Enum(StopEventStatus), nullable=False)

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index('ix_stop_events_stop_occurred', 'stop_id', 'occurred_at'),
        Index('ix_stop_events_vehicle_occurred', 'vehicle_id', 'occurred_at'),
    )

    def __repr__(self):
        return f"<StopEvent(id={self.id}, stop_id={self.stop_id}, status='{self.status.value}')>"
