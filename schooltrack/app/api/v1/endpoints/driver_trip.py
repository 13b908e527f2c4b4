"""
Driver Trip API Endpoints.

Drivers select today's route, start and end the run, and mark students on
board. State rules live in TripController and AttendanceLedger.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from schooltrack.app.db.session import get_db
from schooltrack.app.models.student import Student
from schooltrack.app.schemas.attendance import AttendanceChangeResponse, AttendanceResponse, StudentAttendanceResponse
from schooltrack.app.schemas.trip import SelectRouteRequest, TripResponse, CurrentTripResponse, TripHistoryResponse
from schooltrack.app.core.guards import require_driver
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.audit import log_action, AuditAction
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.trip_controller import TripController

router = APIRouter(prefix="/driver/trip", tags=["Driver - Trip"])


def _controller(db: AsyncSession, ctx: SessionContext) -> TripController:
    return TripController(db, ctx, fanout=NotificationFanout(db))


async def _ledger_view(controller: TripController, trip) -> List[StudentAttendanceResponse]:
    if trip is None or trip.route_id is None:
        return []
    records = await controller.ledger.records_for_route(trip.route_id, trip.service_date)
    if not records:
        return []
    names_result = await controller.db.execute(
        select(Student.id, Student.name).where(Student.id.in_([r.student_id for r in records]))
    )
    names = dict(names_result.all())
    return [
        StudentAttendanceResponse(
            **AttendanceResponse.model_validate(r).model_dump(),
            student_name=names.get(r.student_id, "")
        )
        for r in records
    ]


@router.post("/route", response_model=TripResponse)
async def select_route(
    body: SelectRouteRequest,
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Bind the driver's vehicle to a route for today (Driver only).

    Only allowed while the trip is idle.
    """
    trip = await _controller(db, ctx).select_route(body.route_id)

    await log_action(db, ctx, AuditAction.ROUTE_SELECTED, trip_id=trip.id, route_id=trip.route_id)

    return TripResponse.model_validate(trip)


@router.post("/start", response_model=TripResponse)
async def start_trip(
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Start today's trip (Driver only).

    Validates:
    - Vehicle registered and route selected (412 otherwise)
    - Trip is idle; already in progress returns the trip unchanged
    - No other trip in progress for the driver

    Actions:
    - Seed a waiting attendance row per route student
    - Change state to in_progress and set started_at
    """
    controller = _controller(db, ctx)
    trip = await controller.start_trip()

    await log_action(
        db, ctx, AuditAction.TRIP_STARTED,
        trip_id=trip.id, vehicle_id=trip.vehicle_id, route_id=trip.route_id
    )

    return TripResponse.model_validate(trip)


@router.post("/end", response_model=TripResponse)
async def end_trip(
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    End the trip in progress (Driver only).

    Students still waiting are marked absent; the trip returns to idle after
    a short grace period.
    """
    trip = await _controller(db, ctx).end_trip()

    await log_action(
        db, ctx, AuditAction.TRIP_COMPLETED,
        trip_id=trip.id, vehicle_id=trip.vehicle_id, route_id=trip.route_id
    )

    return TripResponse.model_validate(trip)


@router.get("", response_model=CurrentTripResponse)
async def get_current_trip(
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Today's trip with the route's student list."""
    controller = _controller(db, ctx)
    trip = await controller.current_trip()
    return CurrentTripResponse(
        trip=TripResponse.model_validate(trip) if trip else None,
        students=await _ledger_view(controller, trip)
    )


@router.get("/history", response_model=List[TripHistoryResponse])
async def get_trip_history(
    limit: int = Query(20, ge=1, le=100),
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    history = await _controller(db, ctx).trip_history(limit)
    return [TripHistoryResponse.model_validate(h) for h in history]


@router.post("/students/{student_id}/boarded", response_model=AttendanceChangeResponse)
async def mark_boarded(
    student_id: int = Path(..., description="Student ID"),
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Mark a student on board (Driver only, trip in progress)."""
    controller = _controller(db, ctx)
    record, changed = await controller.ledger.mark_boarded(student_id)

    if changed:
        await log_action(db, ctx, AuditAction.STUDENT_BOARDED, student_id=student_id, route_id=record.route_id)

    return AttendanceChangeResponse(record=AttendanceResponse.model_validate(record), changed=changed)
