"""
Student attendance API endpoints.

A student declares they are waiting at their stop and reads their own status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from schooltrack.app.db.session import get_db
from schooltrack.app.schemas.attendance import PresentAtStopRequest, AttendanceChangeResponse, AttendanceResponse
from schooltrack.app.core.guards import require_student
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.attendance_ledger import AttendanceLedger
from schooltrack.app.services.audit import log_action, AuditAction
from schooltrack.app.services.notification_fanout import NotificationFanout

router = APIRouter(prefix="/attendance", tags=["Student - Attendance"])


@router.post("/present", response_model=AttendanceChangeResponse)
async def mark_present_at_stop(
    body: PresentAtStopRequest,
    ctx: SessionContext = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark the calling student present at a stop.

    Allowed before the trip starts. Repeating it is a no-op.
    """
    ledger = AttendanceLedger(db, ctx, fanout=NotificationFanout(db))
    record, changed = await ledger.mark_present_at_stop(body.stop_id)

    if changed:
        await log_action(db, ctx, AuditAction.STUDENT_PRESENT, student_id=record.student_id, stop_id=body.stop_id)

    return AttendanceChangeResponse(record=AttendanceResponse.model_validate(record), changed=changed)


@router.get("/me", response_model=Optional[AttendanceResponse])
async def get_my_attendance(
    ctx: SessionContext = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """The calling student's record for today, or null before any."""
    ledger = AttendanceLedger(db, ctx)
    student = await ledger.student_for_session()
    record = await ledger.record_for_student(student.id, ledger.today())
    return AttendanceResponse.model_validate(record) if record else None
