"""
Trip Controller.

Owns the per-vehicle trip state machine for a service date:

    idle --start_trip--> in_progress --end_trip--> completed --(grace)--> idle

Starting a trip seeds the attendance ledger for the route; ending it marks
everyone still waiting as absent, records trip history and stops streaming.
The completed -> idle reset is applied lazily whenever the trip is loaded
once `trip_reset_grace_seconds` have elapsed, and by the maintenance sweep.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.core.clock import Clock, as_naive_utc, utcnow, service_date_for
from schooltrack.app.core.config import settings
from schooltrack.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from schooltrack.app.core.session import SessionContext
from schooltrack.app.models.notification import NotificationKind
from schooltrack.app.models.route import Route, Stop
from schooltrack.app.models.stop_event import StopEvent
from schooltrack.app.models.student import Student
from schooltrack.app.models.trip import Trip
from schooltrack.app.models.trip_enums import AttendanceStatus, StopEventStatus, TripState
from schooltrack.app.models.trip_history import TripHistory
from schooltrack.app.models.vehicle import Vehicle
from schooltrack.app.services.attendance_ledger import AttendanceLedger
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.trip_lookup import trip_for_vehicle

logger = logging.getLogger(__name__)


def reset_due(trip: Trip, now: datetime, grace_seconds: int = None) -> bool:
    """True when a completed trip has waited out its grace period."""
    if trip.state != TripState.COMPLETED or trip.ended_at is None:
        return False
    grace = settings.trip_reset_grace_seconds if grace_seconds is None else grace_seconds
    return now >= as_naive_utc(trip.ended_at) + timedelta(seconds=grace)


async def reset_due_trips(db: AsyncSession, now: datetime, grace_seconds: int = None) -> int:
    """Return every completed trip past its grace period to idle."""
    result = await db.execute(select(Trip).where(Trip.state == TripState.COMPLETED))
    count = 0
    for trip in result.scalars().all():
        if reset_due(trip, now, grace_seconds):
            trip.state = TripState.IDLE
            count += 1
    if count:
        await db.commit()
    return count


class TripController:

    def __init__(
        self,
        db: AsyncSession,
        ctx: SessionContext,
        fanout: Optional[NotificationFanout] = None,
        streamer=None,
        clock: Clock = utcnow,
    ):
        if not ctx.is_driver:
            raise InsufficientPermissionsError("Only drivers can control trips")
        self.db = db
        self.ctx = ctx
        self.fanout = fanout
        # In-process PositionStreamer for this driver's device, if any
        self.streamer = streamer
        self.clock = clock
        self.ledger = AttendanceLedger(db, ctx, fanout=fanout, clock=clock)

    def today(self) -> date:
        return service_date_for(self.clock())

    async def vehicle(self) -> Optional[Vehicle]:
        result = await self.db.execute(select(Vehicle).where(Vehicle.driver_id == self.ctx.user_id))
        return result.scalar_one_or_none()

    async def _require_vehicle(self) -> Vehicle:
        vehicle = await self.vehicle()
        if not vehicle:
            raise PreconditionFailedError(
                "You need to register a vehicle before starting a trip",
                remediation="register_vehicle"
            )
        return vehicle

    async def _load_trip(self, vehicle_id: int, create: bool = False) -> Optional[Trip]:
        """
        The vehicle's running trip, else today's, with any due grace reset
        applied. A run started before midnight is still the current trip.
        """
        trip = await trip_for_vehicle(self.db, vehicle_id, self.today())

        if trip is None and create:
            trip = Trip(
                vehicle_id=vehicle_id,
                driver_id=self.ctx.user_id,
                service_date=self.today(),
                state=TripState.IDLE,
            )
            self.db.add(trip)
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                return await self._load_trip(vehicle_id)
        elif trip is not None and reset_due(trip, self.clock()):
            trip.state = TripState.IDLE
            await self.db.flush()
            logger.info("Trip %s reset to idle after grace period", trip.id)

        return trip

    async def current_trip(self) -> Optional[Trip]:
        vehicle = await self._require_vehicle()
        trip = await self._load_trip(vehicle.id)
        await self.db.commit()
        return trip

    async def select_route(self, route_id: int) -> Trip:
        """Bind the driver's vehicle to a route for today. Only from idle."""
        vehicle = await self._require_vehicle()

        route_result = await self.db.execute(select(Route).where(Route.id == route_id))
        route = route_result.scalar_one_or_none()
        if not route or not route.is_active:
            raise ResourceNotFoundError("Route", route_id)

        trip = await self._load_trip(vehicle.id, create=True)
        if trip.state != TripState.IDLE:
            raise InvalidStateTransitionError(
                f"Route can only be changed while the trip is idle, current state: {trip.state.value}",
                current_state=trip.state.value
            )

        trip.route_id = route.id
        trip.driver_id = self.ctx.user_id
        await self.db.commit()
        await self.db.refresh(trip)
        logger.info("Driver %s selected route %s for vehicle %s", self.ctx.user_id, route.id, vehicle.id)
        return trip

    async def _driver_trips_in_progress(self, exclude_trip_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Trip.id)).where(
                Trip.driver_id == self.ctx.user_id,
                Trip.state == TripState.IN_PROGRESS,
                Trip.id != exclude_trip_id
            )
        )
        return result.scalar()

    async def start_trip(self) -> Trip:
        """
        idle -> in_progress.

        Seeds the ledger for the bound route. Calling it again while already
        in progress returns the trip unchanged.
        """
        vehicle = await self._require_vehicle()
        trip = await self._load_trip(vehicle.id, create=True)
        # The idle row must survive a rollback of the seeding transaction below
        await self.db.commit()

        if trip.route_id is None:
            raise PreconditionFailedError(
                "Select a route before starting the trip",
                remediation="select_route"
            )

        if trip.state == TripState.IN_PROGRESS:
            return trip

        if trip.state != TripState.IDLE:
            raise InvalidStateTransitionError(
                f"Can only start an idle trip, current state: {trip.state.value}",
                current_state=trip.state.value
            )

        if await self._driver_trips_in_progress(trip.id) > 0:
            raise InvalidStateTransitionError(
                "You already have a trip in progress. End it before starting another.",
                current_state=TripState.IN_PROGRESS.value
            )

        trip_id = trip.id
        for attempt in range(2):
            try:
                await self.ledger.seed(trip.route_id, trip.service_date)
                trip.state = TripState.IN_PROGRESS
                trip.started_at = self.clock()
                trip.ended_at = None
                await self.db.commit()
                break
            except IntegrityError:
                # A student's own row landed between our check and insert
                await self.db.rollback()
                if attempt == 1:
                    raise
                trip = (await self.db.execute(select(Trip).where(Trip.id == trip_id))).scalar_one()

        await self.db.refresh(trip)
        logger.info("Trip %s started on route %s", trip.id, trip.route_id)

        if self.fanout is not None:
            await self.fanout.trip_transition(trip, NotificationKind.TRIP_STARTED, await self._route_name(trip.route_id))
        return trip

    async def end_trip(self) -> Trip:
        """in_progress -> completed; waiting students become absent."""
        vehicle = await self._require_vehicle()
        trip = await self._load_trip(vehicle.id)

        if trip is None or trip.state != TripState.IN_PROGRESS:
            state = trip.state.value if trip else TripState.IDLE.value
            await self.db.commit()
            raise InvalidStateTransitionError(
                f"Can only end a trip in progress, current state: {state}",
                current_state=state
            )

        now = self.clock()
        absent_ids = await self.ledger.finalize_absent(trip.route_id, trip.service_date, marked_by=self.ctx.user_id)
        trip.state = TripState.COMPLETED
        trip.ended_at = now
        history = await self._build_history(trip)
        self.db.add(history)
        await self.db.commit()
        await self.db.refresh(trip)
        logger.info("Trip %s completed: %d students absent", trip.id, len(absent_ids))

        if self.streamer is not None:
            await self.streamer.stop()

        if self.fanout is not None:
            await self.fanout.trip_transition(trip, NotificationKind.TRIP_COMPLETED, await self._route_name(trip.route_id))
            for record in await self.ledger.records_for_route(trip.route_id, trip.service_date):
                if record.student_id in absent_ids:
                    student = await self.db.get(Student, record.student_id)
                    await self.fanout.attendance_changed(record, student.name if student else str(record.student_id))
        return trip

    async def _build_history(self, trip: Trip) -> TripHistory:
        counts = await self.ledger.status_counts(trip.route_id, trip.service_date)
        total_stops = (await self.db.execute(
            select(func.count(Stop.id)).where(Stop.route_id == trip.route_id)
        )).scalar()
        completed_stops = (await self.db.execute(
            select(func.count(func.distinct(StopEvent.stop_id))).where(
                StopEvent.vehicle_id == trip.vehicle_id,
                StopEvent.route_id == trip.route_id,
                StopEvent.status == StopEventStatus.ARRIVED,
                StopEvent.occurred_at >= trip.started_at
            )
        )).scalar()

        return TripHistory(
            trip_id=trip.id,
            route_id=trip.route_id,
            vehicle_id=trip.vehicle_id,
            service_date=trip.service_date,
            started_at=trip.started_at,
            ended_at=trip.ended_at,
            total_students=sum(counts.values()),
            boarded_count=counts[AttendanceStatus.BOARDED],
            absent_count=counts[AttendanceStatus.ABSENT],
            completed_stops=completed_stops or 0,
            total_stops=total_stops or 0,
        )

    async def trip_history(self, limit: int = 20) -> List[TripHistory]:
        vehicle = await self._require_vehicle()
        result = await self.db.execute(
            select(TripHistory).where(TripHistory.vehicle_id == vehicle.id)
            .order_by(TripHistory.ended_at.desc(), TripHistory.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _route_name(self, route_id: int) -> str:
        route = await self.db.get(Route, route_id)
        return route.name if route else str(route_id)
