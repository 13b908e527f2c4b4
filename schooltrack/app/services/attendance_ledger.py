"""
Attendance Ledger.

Per-student boarding status for a service date. Each transition type has a
single legitimate writer: the student's own session for `present_at_stop`,
the driver for `boarded` and `absent`. Status only moves forward.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.core.clock import Clock, utcnow, service_date_for
from schooltrack.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from schooltrack.app.core.session import SessionContext
from schooltrack.app.models.attendance import AttendanceRecord
from schooltrack.app.models.route import Stop
from schooltrack.app.models.student import Student
from schooltrack.app.models.trip import Trip
from schooltrack.app.models.trip_enums import AttendanceStatus, TripState, can_advance
from schooltrack.app.models.vehicle import Vehicle
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.trip_lookup import in_progress_trip, trip_for_vehicle

logger = logging.getLogger(__name__)


class AttendanceLedger:

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

    def today(self) -> date:
        return service_date_for(self.clock())

    async def seed(self, route_id: int, service_date: date) -> int:
        """
        Create a `waiting` row for every student of the route that has none
        for the date. Safe to call repeatedly.

        Runs in the caller's transaction: the caller commits, so a failure
        part-way leaves no rows behind. Returns the number of rows created.
        """
        students_result = await self.db.execute(
            select(Student).where(Student.route_id == route_id)
        )
        students = students_result.scalars().all()
        if not students:
            return 0

        existing_result = await self.db.execute(
            select(AttendanceRecord.student_id).where(
                AttendanceRecord.service_date == service_date,
                AttendanceRecord.student_id.in_([s.id for s in students])
            )
        )
        existing = set(existing_result.scalars().all())

        created = 0
        for student in students:
            if student.id in existing:
                continue
            self.db.add(AttendanceRecord(
                student_id=student.id,
                route_id=route_id,
                stop_id=student.stop_id,
                service_date=service_date,
                status=AttendanceStatus.WAITING,
            ))
            created += 1

        # Surfaces a uniqueness race as IntegrityError to the caller
        await self.db.flush()
        logger.info("Seeded %d attendance records for route %s on %s", created, route_id, service_date)
        return created

    async def student_for_session(self) -> Student:
        result = await self.db.execute(select(Student).where(Student.user_id == self.ctx.user_id))
        student = result.scalar_one_or_none()
        if not student:
            raise ResourceNotFoundError("Student profile")
        return student

    async def record_for_student(self, student_id: int, service_date: date) -> Optional[AttendanceRecord]:
        result = await self.db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.student_id == student_id,
                AttendanceRecord.service_date == service_date
            )
        )
        return result.scalar_one_or_none()

    async def records_for_route(self, route_id: int, service_date: date) -> List[AttendanceRecord]:
        result = await self.db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.route_id == route_id,
                AttendanceRecord.service_date == service_date
            ).order_by(AttendanceRecord.student_id)
        )
        return list(result.scalars().all())

    async def status_counts(self, route_id: int, service_date: date) -> Dict[AttendanceStatus, int]:
        counts = {status: 0 for status in AttendanceStatus}
        for record in await self.records_for_route(route_id, service_date):
            counts[record.status] += 1
        return counts

    async def mark_present_at_stop(self, stop_id: int) -> tuple[AttendanceRecord, bool]:
        """
        The calling student declares they are at `stop_id`.

        Allowed at any time, including before the trip starts; the student's
        row is created on demand. Returns (record, changed).
        """
        return await self._mark_present(stop_id, retry_on_conflict=True)

    async def _mark_present(self, stop_id: int, retry_on_conflict: bool) -> tuple[AttendanceRecord, bool]:
        if not self.ctx or not self.ctx.is_student:
            raise InsufficientPermissionsError("Only the student can mark their own presence at a stop")

        student = await self.student_for_session()

        stop_result = await self.db.execute(select(Stop).where(Stop.id == stop_id))
        stop = stop_result.scalar_one_or_none()
        if not stop:
            raise ResourceNotFoundError("Stop", stop_id)
        if student.route_id is not None and stop.route_id != student.route_id:
            raise InvalidStateTransitionError(
                "Stop is not on your route",
                details={"stop_id": stop_id, "route_id": student.route_id}
            )

        # A run that crossed midnight keeps its original service date
        running = await in_progress_trip(self.db, route_id=stop.route_id)
        service_date = running.service_date if running else self.today()
        now = self.clock()
        record = await self.record_for_student(student.id, service_date)

        if record is None:
            record = AttendanceRecord(
                student_id=student.id,
                route_id=stop.route_id,
                stop_id=stop.id,
                service_date=service_date,
                status=AttendanceStatus.PRESENT_AT_STOP,
                marked_by=self.ctx.user_id,
                marked_at=now,
            )
            self.db.add(record)
            changed = True
        elif can_advance(record.status, AttendanceStatus.PRESENT_AT_STOP):
            record.status = AttendanceStatus.PRESENT_AT_STOP
            record.stop_id = stop.id
            record.marked_by = self.ctx.user_id
            record.marked_at = now
            changed = True
        else:
            changed = False

        if changed:
            student.stop_id = stop.id
            try:
                await self.db.commit()
            except IntegrityError:
                # The trip was started and seeded this student concurrently
                await self.db.rollback()
                if not retry_on_conflict:
                    raise
                return await self._mark_present(stop_id, retry_on_conflict=False)
            await self.db.refresh(record)
            await self._emit(record, student.name)
        return record, changed

    async def _in_progress_trip_for_driver(self) -> Trip:
        vehicle_result = await self.db.execute(select(Vehicle).where(Vehicle.driver_id == self.ctx.user_id))
        vehicle = vehicle_result.scalar_one_or_none()
        if not vehicle:
            raise InvalidStateTransitionError("No trip in progress: no vehicle registered", current_state=TripState.IDLE.value)

        trip = await trip_for_vehicle(self.db, vehicle.id, self.today())
        if not trip or trip.state != TripState.IN_PROGRESS:
            state = trip.state.value if trip else TripState.IDLE.value
            raise InvalidStateTransitionError(
                f"Students can only be marked boarded while the trip is in progress, current state: {state}",
                current_state=state
            )
        return trip

    async def mark_boarded(self, student_id: int) -> tuple[AttendanceRecord, bool]:
        """
        The driver marks a student on board. Returns (record, changed).

        Rejected before any write unless the driver's trip is in progress.
        """
        if not self.ctx or not self.ctx.is_driver:
            raise InsufficientPermissionsError("Only the driver can mark students boarded")

        trip = await self._in_progress_trip_for_driver()

        student_result = await self.db.execute(select(Student).where(Student.id == student_id))
        student = student_result.scalar_one_or_none()
        if not student or student.route_id != trip.route_id:
            raise ResourceNotFoundError("Student on this route", student_id)

        record = await self.record_for_student(student_id, trip.service_date)
        if record is None:
            # Assigned to the route after the trip started
            await self.seed(trip.route_id, trip.service_date)
            record = await self.record_for_student(student_id, trip.service_date)

        if record.status == AttendanceStatus.BOARDED:
            return record, False
        if not can_advance(record.status, AttendanceStatus.BOARDED):
            raise InvalidStateTransitionError(
                f"Student status '{record.status.value}' is final for today",
                current_state=record.status.value
            )

        record.status = AttendanceStatus.BOARDED
        record.marked_by = self.ctx.user_id
        record.marked_at = self.clock()
        await self.db.commit()
        await self.db.refresh(record)
        await self._emit(record, student.name)
        return record, True

    async def _emit(self, record: AttendanceRecord, student_name: str) -> None:
        if self.fanout is not None:
            await self.fanout.attendance_changed(record, student_name)

    async def finalize_absent(self, route_id: int, service_date: date, marked_by: Optional[int] = None) -> List[int]:
        """
        Set every `waiting` row of the route/date to `absent`.

        Runs in the caller's transaction. Returns the affected student ids.
        """
        waiting_result = await self.db.execute(
            select(AttendanceRecord.student_id).where(
                AttendanceRecord.route_id == route_id,
                AttendanceRecord.service_date == service_date,
                AttendanceRecord.status == AttendanceStatus.WAITING
            )
        )
        student_ids = list(waiting_result.scalars().all())
        if not student_ids:
            return []

        await self.db.execute(
            update(AttendanceRecord).where(
                AttendanceRecord.route_id == route_id,
                AttendanceRecord.service_date == service_date,
                AttendanceRecord.status == AttendanceStatus.WAITING
            ).values(
                status=AttendanceStatus.ABSENT,
                marked_by=marked_by,
                marked_at=self.clock()
            ).execution_options(synchronize_session="fetch")
        )
        return student_ids
