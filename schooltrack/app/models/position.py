"""
Position sample and last-known-position models.

PositionSample is the append-only breadcrumb history; LastKnownPosition is
its read-optimized projection, written in the same transaction.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base


class PositionSample(Base):
    """One GPS fix reported by a driver's device."""
    __tablename__ = "position_samples"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=False, default=0.0)
    heading = Column(Float, nullable=False, default=0.0)
    accuracy_meters = Column(Float, nullable=True)

    captured_at = Column(DateTime(timezone=True), nullable=False, index=True)  # When GPS was recorded
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)  # When inserted to DB

    def __repr__(self):
        return f"<PositionSample(vehicle_id={self.vehicle_id}, lat={self.latitude}, lng={self.longitude})>"


class LastKnownPosition(Base):
    """Latest fix per vehicle (last write wins)."""
    __tablename__ = "last_known_positions"

    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), primary_key=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=False, default=0.0)
    heading = Column(Float, nullable=False, default=0.0)

    captured_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<LastKnownPosition(vehicle_id={self.vehicle_id}, lat={self.latitude}, lng={self.longitude})>"
