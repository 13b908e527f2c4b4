"""
Route and Stop database models.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base


class Route(Base):
    """A school bus route: an ordered list of stops."""
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Route(id={self.id}, name='{self.name}')>"


class Stop(Base):
    """A pickup point on a route."""
    __tablename__ = "stops"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    # Order along the route (1, 2, 3, ...)
    sequence_number = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint('route_id', 'sequence_number', name='uq_stops_route_sequence'),
    )

    def __repr__(self):
        return f"<Stop(id={self.id}, route_id={self.route_id}, seq={self.sequence_number})>"
