"""
Stop Event API Endpoints.

Drivers register arrivals and departures; anyone signed in can read the
events still inside their visibility window.
"""

from fastapi import APIRouter, Depends, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from schooltrack.app.db.session import get_db
from schooltrack.app.schemas.stop_event import StopEventCreate, StopEventResponse
from schooltrack.app.core.dependencies import get_session_context
from schooltrack.app.core.guards import require_driver
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.audit import log_action, AuditAction
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.stop_event_broker import StopEventBroker

router = APIRouter(tags=["Stop Events"])


@router.post("/stops/{stop_id}/arrival", response_model=StopEventResponse, status_code=status.HTTP_201_CREATED)
async def register_arrival(
    stop_id: int = Path(..., description="Stop ID"),
    body: StopEventCreate = Body(...),
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Register the vehicle's arrival at a stop (Driver only, trip in progress)."""
    event = await StopEventBroker(db, ctx, fanout=NotificationFanout(db)).register_arrival(stop_id, body.vehicle_id)

    await log_action(db, ctx, AuditAction.STOP_ARRIVAL, stop_id=stop_id, vehicle_id=body.vehicle_id, stop_event_id=event.id)

    return StopEventResponse.model_validate(event)


@router.post("/stops/{stop_id}/departure", response_model=StopEventResponse, status_code=status.HTTP_201_CREATED)
async def register_departure(
    stop_id: int = Path(..., description="Stop ID"),
    body: StopEventCreate = Body(...),
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Register the vehicle's departure from a stop (Driver only, trip in progress)."""
    event = await StopEventBroker(db, ctx, fanout=NotificationFanout(db)).register_departure(stop_id, body.vehicle_id)

    await log_action(db, ctx, AuditAction.STOP_DEPARTURE, stop_id=stop_id, vehicle_id=body.vehicle_id, stop_event_id=event.id)

    return StopEventResponse.model_validate(event)


@router.get("/stops/{stop_id}/events", response_model=List[StopEventResponse])
async def get_stop_events(
    stop_id: int = Path(..., description="Stop ID"),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """Most recent non-expired events at a stop, newest first."""
    events = await StopEventBroker(db, ctx).query_by_stop(stop_id)
    return [StopEventResponse.model_validate(e) for e in events]


@router.get("/vehicles/{vehicle_id}/events", response_model=List[StopEventResponse])
async def get_vehicle_events(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """Most recent non-expired events of a vehicle, newest first."""
    events = await StopEventBroker(db, ctx).query_by_vehicle(vehicle_id)
    return [StopEventResponse.model_validate(e) for e in events]
