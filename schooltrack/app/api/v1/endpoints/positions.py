"""
Position API Endpoints.

Driver devices post GPS fixes; passengers read a vehicle's last known
position and recent breadcrumb trail.
"""

from fastapi import APIRouter, Depends, Path, Body, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from schooltrack.app.db.session import get_db
from schooltrack.app.schemas.position import PositionSampleCreate, PositionSampleResponse, LastKnownPositionResponse
from schooltrack.app.core.clock import as_naive_utc
from schooltrack.app.core.dependencies import get_session_context
from schooltrack.app.core.guards import require_driver
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.notification_fanout import NotificationFanout
from schooltrack.app.services.position_service import PositionService

router = APIRouter(tags=["Positions"])


@router.post("/driver/positions", response_model=PositionSampleResponse, status_code=status.HTTP_201_CREATED)
async def record_position(
    sample: PositionSampleCreate = Body(...),
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a GPS fix for the driver's vehicle (Driver only).

    Accepted only while tracking is enabled and the trip is in progress.
    """
    service = PositionService(db, ctx, fanout=NotificationFanout(db))
    stored = await service.record_sample(
        vehicle_id=sample.vehicle_id,
        latitude=sample.latitude,
        longitude=sample.longitude,
        speed=sample.speed,
        heading=sample.heading,
        accuracy_meters=sample.accuracy_meters,
        captured_at=as_naive_utc(sample.captured_at)
    )

    # Audit log (silent - too many to log individually)

    return PositionSampleResponse.model_validate(stored)


@router.get("/vehicles/{vehicle_id}/position", response_model=Optional[LastKnownPositionResponse])
async def get_last_known_position(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    position = await PositionService(db, ctx).last_known_position(vehicle_id)
    return LastKnownPositionResponse.model_validate(position) if position else None


@router.get("/vehicles/{vehicle_id}/positions", response_model=List[PositionSampleResponse])
async def get_recent_positions(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    limit: int = Query(50, ge=1, le=500),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    samples = await PositionService(db, ctx).recent_samples(vehicle_id, limit)
    return [PositionSampleResponse.model_validate(s) for s in samples]
