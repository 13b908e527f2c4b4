"""
Conversation API Endpoints.

Relays chat messages to the conversation's live channel. Messages are stored
by the chat service; this endpoint only fans them out to open streams.
"""

import logging

from fastapi import APIRouter, Depends, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.db.session import get_db
from schooltrack.app.schemas.notification import ChatMessageCreate
from schooltrack.app.core.dependencies import get_session_context
from schooltrack.app.core.session import SessionContext
from schooltrack.app.services.notification_fanout import NotificationFanout

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.post("/{conversation_id}/messages", status_code=status.HTTP_202_ACCEPTED)
async def post_chat_message(
    conversation_id: str = Path(..., min_length=1, max_length=64),
    message: ChatMessageCreate = Body(...),
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db)
):
    """Push a chat message to everyone streaming the conversation; returns the event sent."""
    event = NotificationFanout(db).chat_message(
        conversation_id, ctx.user_id, message.body, message_id=message.message_id
    )
    logger.debug("Chat message %s relayed to conversation %s", event["id"], conversation_id)
    return event
