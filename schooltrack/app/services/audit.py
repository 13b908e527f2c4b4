"""
Audit trail: logins plus every driver/passenger action that changes trip
state (route selection, start/end, presence, boarding, stop events).
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from schooltrack.app.core.session import SessionContext
from schooltrack.app.models.audit_log import AuditLog


class AuditAction:
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"

    VEHICLE_REGISTERED = "VEHICLE_REGISTERED"
    TRACKING_TOGGLED = "TRACKING_TOGGLED"

    ROUTE_SELECTED = "ROUTE_SELECTED"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"

    STUDENT_PRESENT = "STUDENT_PRESENT"
    STUDENT_BOARDED = "STUDENT_BOARDED"

    STOP_ARRIVAL = "STOP_ARRIVAL"
    STOP_DEPARTURE = "STOP_DEPARTURE"

    STOP_EVENTS_SWEPT = "STOP_EVENTS_SWEPT"
    POSITIONS_ARCHIVED = "POSITIONS_ARCHIVED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Append one entry and commit it.

    Callers log after the audited operation has committed, so a failed
    operation never leaves a success entry behind.
    """
    entry = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        meta_data=metadata,
        ip_address=ip_address
    )
    db.add(entry)
    await db.commit()
    return entry


async def log_action(db: AsyncSession, ctx: SessionContext, action: str, **metadata: Any) -> AuditLog:
    """Audit an action performed by the authenticated caller."""
    return await log_event(
        db,
        action,
        actor_id=ctx.user_id,
        actor_username=ctx.username,
        metadata=metadata or None,
    )


async def get_audit_trail(
    db: AsyncSession,
    actor_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> List[AuditLog]:
    """Most recent entries first, optionally filtered by actor and action."""
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
    if actor_id is not None:
        query = query.where(AuditLog.actor_id == actor_id)
    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())
