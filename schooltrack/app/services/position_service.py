"""
Position ingest and read side.

A sample is accepted only from the vehicle's own driver, while tracking is
enabled for the vehicle and its trip is in progress. The append to
`position_samples` and the upsert of `last_known_positions` share one
transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, delete, insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.core.clock import Clock, utcnow, service_date_for
from schooltrack.app.core.config import settings
from schooltrack.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
    TrackingDisabledError,
    TransientIOError,
)
from schooltrack.app.core.session import SessionContext
from schooltrack.app.models.archived_position_sample import ArchivedPositionSample
from schooltrack.app.models.position import PositionSample, LastKnownPosition
from schooltrack.app.models.trip_enums import TripState
from schooltrack.app.models.vehicle import Vehicle
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.trip_lookup import trip_for_vehicle

logger = logging.getLogger(__name__)

ARCHIVE_BATCH_SIZE = 1000


class PositionService:

    def __init__(
        self,
        db: AsyncSession,
        ctx: Optional[SessionContext] = None,
        fanout: Optional[NotificationFanout] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.ctx = ctx
        self.fanout = fanout
        self.clock = clock

    async def _vehicle(self, vehicle_id: int) -> Vehicle:
        result = await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
        vehicle = result.scalar_one_or_none()
        if not vehicle:
            raise ResourceNotFoundError("Vehicle", vehicle_id)
        return vehicle

    def _upsert(self, values: dict):
        dialect = self.db.get_bind().dialect.name
        insert_fn = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert_fn(LastKnownPosition).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[LastKnownPosition.vehicle_id],
            set_={k: v for k, v in values.items() if k != "vehicle_id"},
        )

    async def record_sample(
        self,
        vehicle_id: int,
        latitude: float,
        longitude: float,
        speed: float = 0.0,
        heading: float = 0.0,
        accuracy_meters: Optional[float] = None,
        captured_at: Optional[datetime] = None,
    ) -> PositionSample:
        if not self.ctx or not self.ctx.is_driver:
            raise InsufficientPermissionsError("Only drivers can report vehicle positions")

        vehicle = await self._vehicle(vehicle_id)
        if vehicle.driver_id != self.ctx.user_id:
            raise InsufficientPermissionsError("This vehicle is not assigned to you")
        if not vehicle.tracking_enabled:
            raise TrackingDisabledError(vehicle.id)

        now = self.clock()
        trip = await trip_for_vehicle(self.db, vehicle.id, service_date_for(now))
        if not trip or trip.state != TripState.IN_PROGRESS:
            state = trip.state.value if trip else TripState.IDLE.value
            raise InvalidStateTransitionError(
                f"Positions are only accepted while the trip is in progress, current state: {state}",
                current_state=state
            )

        captured_at = captured_at or now
        sample = PositionSample(
            vehicle_id=vehicle.id,
            driver_id=self.ctx.user_id,
            latitude=latitude,
            longitude=longitude,
            speed=speed,
            heading=heading,
            accuracy_meters=accuracy_meters,
            captured_at=captured_at,
        )

        try:
            self.db.add(sample)
            await self.db.execute(self._upsert({
                "vehicle_id": vehicle.id,
                "latitude": latitude,
                "longitude": longitude,
                "speed": speed,
                "heading": heading,
                "captured_at": captured_at,
                "updated_at": now,
            }))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to store position for vehicle %s: %s", vehicle.id, e)
            raise TransientIOError("Could not store position sample", details={"vehicle_id": vehicle.id})

        await self.db.refresh(sample)

        if self.fanout is not None:
            self.fanout.position(vehicle.id, {
                "vehicle_id": vehicle.id,
                "latitude": latitude,
                "longitude": longitude,
                "speed": speed,
                "heading": heading,
                "captured_at": captured_at.isoformat(),
            })
        return sample

    async def last_known_position(self, vehicle_id: int) -> Optional[LastKnownPosition]:
        await self._vehicle(vehicle_id)
        result = await self.db.execute(
            select(LastKnownPosition).where(LastKnownPosition.vehicle_id == vehicle_id)
        )
        return result.scalar_one_or_none()

    async def recent_samples(self, vehicle_id: int, limit: int = None) -> List[PositionSample]:
        await self._vehicle(vehicle_id)
        result = await self.db.execute(
            select(PositionSample).where(
                PositionSample.vehicle_id == vehicle_id
            ).order_by(PositionSample.captured_at.desc(), PositionSample.id.desc())
            .limit(limit or settings.position_history_limit)
        )
        return list(result.scalars().all())

    async def archive_samples(self, days_to_keep: int = None) -> int:
        """
        Move samples older than the retention window to the archive table.

        Processes at most one batch per call. Returns the number of rows moved.
        """
        days = settings.position_retention_days if days_to_keep is None else days_to_keep
        now = self.clock()
        cutoff = now - timedelta(days=days)

        result = await self.db.execute(
            select(PositionSample).where(PositionSample.captured_at < cutoff)
            .order_by(PositionSample.id).limit(ARCHIVE_BATCH_SIZE)
        )
        rows = result.scalars().all()
        if not rows:
            return 0

        await self.db.execute(insert(ArchivedPositionSample), [
            {
                "original_id": r.id,
                "vehicle_id": r.vehicle_id,
                "driver_id": r.driver_id,
                "latitude": r.latitude,
                "longitude": r.longitude,
                "speed": r.speed,
                "heading": r.heading,
                "accuracy_meters": r.accuracy_meters,
                "captured_at": r.captured_at,
                "archived_at": now,
            }
            for r in rows
        ])
        await self.db.execute(delete(PositionSample).where(PositionSample.id.in_([r.id for r in rows])))
        await self.db.commit()

        logger.info("Archived %d position samples older than %s", len(rows), cutoff)
        return len(rows)
