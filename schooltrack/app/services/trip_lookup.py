"""
Trip lookups shared by the services that act on a running trip.

A trip stays bound to the service date it started on, so a run that crosses
midnight is still found (and can still be ended) on the next date.
"""

from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.models.trip import Trip
from schooltrack.app.models.trip_enums import TripState


async def in_progress_trip(db: AsyncSession, **criteria) -> Optional[Trip]:
    """Most recent in-progress trip matching `criteria` (vehicle_id=..., route_id=...)."""
    query = select(Trip).where(Trip.state == TripState.IN_PROGRESS)
    for column, value in criteria.items():
        query = query.where(getattr(Trip, column) == value)
    result = await db.execute(query.order_by(Trip.service_date.desc(), Trip.id.desc()).limit(1))
    return result.scalars().first()


async def trip_for_vehicle(db: AsyncSession, vehicle_id: int, service_date: date) -> Optional[Trip]:
    """The vehicle's in-progress trip whatever its date, else its trip for `service_date`."""
    trip = await in_progress_trip(db, vehicle_id=vehicle_id)
    if trip is not None:
        return trip
    result = await db.execute(
        select(Trip).where(Trip.vehicle_id == vehicle_id, Trip.service_date == service_date)
    )
    return result.scalar_one_or_none()
