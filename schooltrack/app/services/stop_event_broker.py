"""
Stop Event Broker.

Arrival and departure markers at route stops. Every event carries
`expires_at = occurred_at + stop_event_ttl_minutes` and is only served while
`now < expires_at`. Expired rows are deleted by the maintenance sweep, but the
query-time filter is what decides visibility.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.core.clock import Clock, utcnow, service_date_for
from schooltrack.app.core.config import settings
from schooltrack.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from schooltrack.app.core.session import SessionContext
from schooltrack.app.models.route import Stop
from schooltrack.app.models.stop_event import StopEvent
from schooltrack.app.models.trip_enums import StopEventStatus, TripState
from schooltrack.app.models.vehicle import Vehicle
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.trip_lookup import trip_for_vehicle

logger = logging.getLogger(__name__)


class StopEventBroker:

    def __init__(
        self,
        db: AsyncSession,
        ctx: Optional[SessionContext] = None,
        fanout: Optional[NotificationFanout] = None,
        clock: Clock = utcnow,
        ttl_minutes: int = None,
    ):
        self.db = db
        self.ctx = ctx
        self.fanout = fanout
        self.clock = clock
        self.ttl = timedelta(minutes=settings.stop_event_ttl_minutes if ttl_minutes is None else ttl_minutes)

    async def register_arrival(self, stop_id: int, vehicle_id: int) -> StopEvent:
        return await self._register(stop_id, vehicle_id, StopEventStatus.ARRIVED)

    async def register_departure(self, stop_id: int, vehicle_id: int) -> StopEvent:
        return await self._register(stop_id, vehicle_id, StopEventStatus.DEPARTED)

    async def _register(self, stop_id: int, vehicle_id: int, status: StopEventStatus) -> StopEvent:
        if not self.ctx or not self.ctx.is_driver:
            raise InsufficientPermissionsError("Only drivers can register stop events")

        stop = (await self.db.execute(select(Stop).where(Stop.id == stop_id))).scalar_one_or_none()
        if not stop:
            raise ResourceNotFoundError("Stop", stop_id)

        vehicle = (await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))).scalar_one_or_none()
        if not vehicle:
            raise ResourceNotFoundError("Vehicle", vehicle_id)
        if vehicle.driver_id != self.ctx.user_id:
            raise InsufficientPermissionsError("This vehicle is not assigned to you")

        now = self.clock()
        trip = await trip_for_vehicle(self.db, vehicle.id, service_date_for(now))
        if not trip or trip.state != TripState.IN_PROGRESS:
            state = trip.state.value if trip else TripState.IDLE.value
            raise InvalidStateTransitionError(
                f"Stop events can only be registered while the trip is in progress, current state: {state}",
                current_state=state
            )

        event = StopEvent(
            stop_id=stop.id,
            vehicle_id=vehicle.id,
            route_id=stop.route_id,
            status=status,
            occurred_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        logger.info("Vehicle %s %s stop %s", vehicle.id, status.value, stop.id)

        if self.fanout is not None:
            try:
                await self.fanout.stop_event(event, stop.name, vehicle.plate)
            except Exception:
                # The event is already stored; readers can still query it
                logger.exception("Failed to fan out stop event %s", event.id)
        return event

    async def query_by_stop(self, stop_id: int, limit: int = None) -> List[StopEvent]:
        return await self._query(StopEvent.stop_id == stop_id, limit)

    async def query_by_vehicle(self, vehicle_id: int, limit: int = None) -> List[StopEvent]:
        return await self._query(StopEvent.vehicle_id == vehicle_id, limit)

    async def _query(self, criterion, limit: Optional[int]) -> List[StopEvent]:
        result = await self.db.execute(
            select(StopEvent).where(
                criterion,
                StopEvent.expires_at > self.clock()
            ).order_by(StopEvent.occurred_at.desc(), StopEvent.id.desc())
            .limit(limit or settings.stop_event_query_limit)
        )
        return list(result.scalars().all())

    async def sweep_expired(self) -> int:
        """Delete events whose visibility window has passed."""
        result = await self.db.execute(
            delete(StopEvent).where(StopEvent.expires_at <= self.clock())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("Swept %d expired stop events", result.rowcount)
        return result.rowcount
