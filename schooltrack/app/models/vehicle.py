"""
Vehicle database model.

Each driver registers exactly one vehicle before starting trips.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base


class Vehicle(Base):
    """
    Vehicle model.

    `tracking_enabled` is the per-vehicle toggle gating location streaming.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    driver_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=False, index=True)

    plate = Column(String(20), unique=True, nullable=False, index=True)
    model = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False, default=0)

    tracking_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate='{self.plate}', driver_id={self.driver_id})>"
