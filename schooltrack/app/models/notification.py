"""
Notification database model.

Persisted copy of fanned-out events so sessions that missed the live push
can recover by re-querying.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, Enum
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base
import enum


class NotificationKind(str, enum.Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"
    PRESENT_AT_STOP = "present_at_stop"
    BOARDED = "boarded"
    ABSENT = "absent"
    TRIP_STARTED = "trip_started"
    TRIP_COMPLETED = "trip_completed"
    CHAT_MESSAGE = "chat_message"
    POSITION = "position"
    SYSTEM = "system"


class Notification(Base):
    """
    In-app notification addressed to a recipient scope.

    Scopes: "user:<id>", "stop:<id>", "route:<id>", "vehicle:<id>".
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    recipient_scope = Column(String(64), nullable=False, index=True)

    kind = Column(Enum(NotificationKind), default=NotificationKind.SYSTEM, nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, scope='{self.recipient_scope}', kind='{self.kind.value}')>"
