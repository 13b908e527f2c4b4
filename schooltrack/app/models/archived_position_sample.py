"""
Archived position samples.

Cold storage for samples older than the retention window.
"""

from sqlalchemy import Column, Integer, Float, DateTime
from schooltrack.app.db.session import Base


class ArchivedPositionSample(Base):
    """
    Same structure as PositionSample, without foreign keys.
    Optimized for bulk inserts, not real-time query.
    """
    __tablename__ = "archived_position_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)

    original_id = Column(Integer, nullable=False)
    vehicle_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=False)
    heading = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)

    captured_at = Column(DateTime(timezone=True), nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=False)
