"""
Trip history database model.

One row per completed run, written by end_trip.
"""

from sqlalchemy import Column, Integer, Date, ForeignKey, DateTime
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base


class TripHistory(Base):
    __tablename__ = "trip_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    service_date = Column(Date, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=False)

    total_students = Column(Integer, nullable=False, default=0)
    boarded_count = Column(Integer, nullable=False, default=0)
    absent_count = Column(Integer, nullable=False, default=0)

    # Stops with at least one arrival during the run
    completed_stops = Column(Integer, nullable=False, default=0)
    total_stops = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<TripHistory(trip_id={self.trip_id}, boarded={self.boarded_count}, absent={self.absent_count})>"
