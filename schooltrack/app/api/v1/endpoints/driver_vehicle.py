"""
Driver vehicle registration API endpoints.

A driver registers exactly one vehicle before selecting a route, and toggles
location tracking for it.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from schooltrack.app.db.session import get_db
from schooltrack.app.models.vehicle import Vehicle
from schooltrack.app.schemas.vehicle import VehicleRegister, VehicleResponse, TrackingToggle
from schooltrack.app.core.exceptions import PreconditionFailedError
from schooltrack.app.core.guards import require_driver
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.audit import log_action, AuditAction

router = APIRouter(prefix="/driver/vehicle", tags=["Driver - Vehicle"])


async def _driver_vehicle(db: AsyncSession, ctx: SessionContext) -> Vehicle:
    result = await db.execute(select(Vehicle).where(Vehicle.driver_id == ctx.user_id))
    vehicle = result.scalar_one_or_none()
    if not vehicle:
        raise PreconditionFailedError(
            "No vehicle registered for this driver",
            remediation="register_vehicle"
        )
    return vehicle


@router.post("", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def register_vehicle(
    vehicle_data: VehicleRegister,
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Register the driver's vehicle (Driver only).

    Validates:
    - Driver has no vehicle yet
    - Plate is unique
    """
    plate = vehicle_data.plate.strip().upper()

    result = await db.execute(
        select(Vehicle).where(or_(Vehicle.driver_id == ctx.user_id, Vehicle.plate == plate))
    )
    existing = result.scalars().first()
    if existing:
        detail = "You already have a registered vehicle" if existing.driver_id == ctx.user_id \
            else f"Vehicle with plate '{plate}' already exists"
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    vehicle = Vehicle(
        driver_id=ctx.user_id,
        plate=plate,
        model=vehicle_data.model,
        capacity=vehicle_data.capacity,
        tracking_enabled=True
    )
    db.add(vehicle)
    await db.commit()
    await db.refresh(vehicle)

    await log_action(db, ctx, AuditAction.VEHICLE_REGISTERED, vehicle_id=vehicle.id, plate=vehicle.plate)

    return VehicleResponse.model_validate(vehicle)


@router.get("", response_model=VehicleResponse)
async def get_my_vehicle(
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Get the driver's vehicle. 412 with remediation when none is registered."""
    return VehicleResponse.model_validate(await _driver_vehicle(db, ctx))


@router.patch("/tracking", response_model=VehicleResponse)
async def set_tracking(
    toggle: TrackingToggle,
    ctx: SessionContext = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Enable or disable location tracking for the driver's vehicle."""
    vehicle = await _driver_vehicle(db, ctx)
    vehicle.tracking_enabled = toggle.tracking_enabled
    await db.commit()
    await db.refresh(vehicle)

    await log_action(db, ctx, AuditAction.TRACKING_TOGGLED, vehicle_id=vehicle.id, tracking_enabled=vehicle.tracking_enabled)

    return VehicleResponse.model_validate(vehicle)
