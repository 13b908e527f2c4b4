"""
Admin Operations API Endpoints.

On-demand runs of the maintenance jobs that also run on a timer.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.db.session import get_db
from schooltrack.app.core.clock import utcnow
from schooltrack.app.core.guards import require_admin
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.audit import log_action, get_audit_trail, AuditAction
from schooltrack.app.services.position_service import PositionService
from schooltrack.app.services.stop_event_broker import StopEventBroker
from schooltrack.app.services.trip_controller import reset_due_trips

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/sweep-stop-events")
async def sweep_stop_events(
    ctx: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete stop events past their visibility window."""
    count = await StopEventBroker(db, ctx).sweep_expired()

    await log_action(db, ctx, AuditAction.STOP_EVENTS_SWEPT, rows_deleted=count)

    return {"message": "Sweep completed", "rows_deleted": count}


@router.post("/archive-positions")
async def archive_positions(
    days_to_keep: int = Query(30, ge=0),
    ctx: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Trigger archival of position samples older than N days.
    Moves data from hot table to archive table.
    """
    count = await PositionService(db, ctx).archive_samples(days_to_keep)

    await log_action(db, ctx, AuditAction.POSITIONS_ARCHIVED, rows_archived=count, days_to_keep=days_to_keep)

    return {"message": "Archival job completed", "rows_archived": count}


@router.post("/reset-trips")
async def reset_trips(
    ctx: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Return completed trips past their grace period to idle."""
    count = await reset_due_trips(db, utcnow())
    return {"message": "Reset completed", "trips_reset": count}


@router.get("/audit")
async def audit_trail(
    actor_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    ctx: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Recent audit entries, newest first."""
    entries = await get_audit_trail(db, actor_id=actor_id, action=action, limit=limit)
    return [
        {
            "id": e.id,
            "action": e.action,
            "actor_id": e.actor_id,
            "actor_username": e.actor_username,
            "metadata": e.meta_data,
            "timestamp": e.timestamp,
        }
        for e in entries
    ]
