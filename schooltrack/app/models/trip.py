"""
Trip database model.

One trip per (vehicle, service date); the row is reused through the
idle -> in_progress -> completed -> idle cycle.
"""

from sqlalchemy import Column, Integer, Date, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base
from schooltrack.app.models.trip_enums import TripState


class Trip(Base):
    """
    Trip model.

    A vehicle's transport run for one service date. Created on the first
    route selection (or start) of the day.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=True, index=True)

    service_date = Column(Date, nullable=False, index=True)

    state = Column(Enum(TripState), default=TripState.IDLE, nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('vehicle_id', 'service_date', name='uq_trips_vehicle_date'),
    )

    def __repr__(self):
        return f"<Trip(id={self.id}, vehicle_id={self.vehicle_id}, date={self.service_date}, state='{self.state.value}')>"
