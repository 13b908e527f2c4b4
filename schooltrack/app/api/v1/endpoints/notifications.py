"""
Notification API Endpoints.

Persisted notifications for the caller's scopes, plus the Server-Sent Events
stream for live updates on one (scope, key) channel.
"""

import asyncio
import json
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import List, Optional

from schooltrack.app.db.session import get_db
from schooltrack.app.schemas.notification import NotificationResponse
from schooltrack.app.core.clock import as_naive_utc
from schooltrack.app.core.dependencies import get_session_context
from schooltrack.app.core.realtime import subscription_manager
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.notification_fanout import NotificationFanout, scope_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])
stream_router = APIRouter(prefix="/stream", tags=["Realtime"])

# Readable by any signed-in session: bus positions on the map and chat
# conversations (membership is enforced where chat messages are stored)
OPEN_SCOPES = {"vehicle", "conversation"}
KEEPALIVE_SECONDS = 15


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    since: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """List notifications addressed to the caller's scopes, newest first."""
    fanout = NotificationFanout(db)
    scopes = await fanout.scopes_for_session(ctx)
    notifications = await fanout.list_for_scopes(scopes, since=as_naive_utc(since), unread_only=unread_only, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int = Path(...),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """Mark a specific notification as read."""
    fanout = NotificationFanout(db)
    success = await fanout.mark_read(notification_id, await fanout.scopes_for_session(ctx))
    if not success:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"status": "success"}


@router.patch("/read-all")
async def mark_all_notifications_read(
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """Mark all notifications as read."""
    fanout = NotificationFanout(db)
    count = await fanout.mark_all_read(await fanout.scopes_for_session(ctx))
    return {"status": "success", "count": count}


@stream_router.get("/{scope}/{key}")
async def stream_events(
    request: Request,
    scope: str = Path(..., description="stop, route, vehicle, student, user or conversation"),
    key: str = Path(...),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Server-Sent Events for one channel.

    The subscription is held for the lifetime of the connection; events
    missed while disconnected are recovered through GET /notifications.
    """
    if scope not in OPEN_SCOPES and not ctx.is_staff:
        allowed = await NotificationFanout(db).scopes_for_session(ctx)
        if scope_name(scope, key) not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not subscribed to {scope_name(scope, key)}"
            )

    subscriber_id = f"{ctx.user_id}:{uuid.uuid4().hex}"

    async def gen():
        async with subscription_manager.subscription(scope, key, subscriber_id) as sub:
            logger.debug("SSE %s subscribed to %s", subscriber_id, scope_name(scope, key))
            yield ": connected\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(sub.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"id: {event['id']}\nevent: {event['kind']}\ndata: {json.dumps(event)}\n\n"

    return StreamingResponse(gen(), media_type="text/event-stream")
