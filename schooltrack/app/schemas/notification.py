"""
Notification schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any
from schooltrack.app.models.notification import NotificationKind


class NotificationResponse(BaseModel):
    id: int
    recipient_scope: str
    kind: NotificationKind
    message: str
    payload: Optional[Dict[str, Any]]
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime]

    class Config:
        from_attributes = True


class ChatMessageCreate(BaseModel):
    """A chat line to relay live; `message_id` is the id the chat store assigned, if any."""
    body: str = Field(..., min_length=1, max_length=2000)
    message_id: Optional[str] = Field(default=None, max_length=64)
