"""
Notification Fanout.

Derives user-facing events from stop events, attendance changes, trip
transitions, positions and chat messages, and pushes them to the sessions
subscribed to the matching channel. Stop, attendance and trip events are also
stored as Notification rows so a session that was disconnected can recover by
re-querying. Delivery is at-least-once and best effort; consumers de-duplicate
by event id.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, desc, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schooltrack.app.core.clock import Clock, utcnow
from schooltrack.app.core.realtime import SubscriptionManager, subscription_manager
from schooltrack.app.core.session import SessionContext
from schooltrack.app.models.enums import UserRole
from schooltrack.app.models.notification import Notification, NotificationKind
from schooltrack.app.models.student import Student
from schooltrack.app.models.vehicle import Vehicle

logger = logging.getLogger(__name__)


def scope_name(scope: str, key: Any) -> str:
    return f"{scope}:{key}"


class NotificationFanout:

    def __init__(
        self,
        db: AsyncSession,
        manager: SubscriptionManager = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.manager = manager or subscription_manager
        self.clock = clock

    def _envelope(self, event_id: str, scope: str, key: Any, kind: NotificationKind,
                  message: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "id": event_id,
            "scope": scope,
            "key": str(key),
            "kind": kind.value,
            "message": message,
            "payload": payload or {},
            "occurred_at": self.clock().isoformat(),
        }

    async def notify(
        self,
        scope: str,
        key: Any,
        kind: NotificationKind,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        persist: bool = True,
    ) -> Dict[str, Any]:
        """
        Store (optionally) and push one event to the (scope, key) channel.

        A storage failure is logged and the live push still goes out.
        """
        event_id = f"evt:{uuid.uuid4().hex}"
        if persist:
            notification = Notification(
                recipient_scope=scope_name(scope, key),
                kind=kind,
                message=message,
                payload=payload,
                created_at=self.clock(),
            )
            try:
                # A failed insert only rolls back this savepoint
                async with self.db.begin_nested():
                    self.db.add(notification)
                await self.db.commit()
                event_id = f"notification:{notification.id}"
            except SQLAlchemyError as e:
                logger.error("Failed to store %s notification for %s:%s: %s", kind.value, scope, key, e)

        event = self._envelope(event_id, scope, key, kind, message, payload)
        delivered = self.manager.publish(scope, key, event)
        logger.debug("Pushed %s to %s:%s (%d live sessions)", kind.value, scope, key, delivered)
        return event

    # Event classes

    async def stop_event(self, stop_event, stop_name: str, vehicle_plate: str) -> Dict[str, Any]:
        arrived = stop_event.status.value == "arrived"
        kind = NotificationKind.ARRIVAL if arrived else NotificationKind.DEPARTURE
        verb = "arrived at" if arrived else "left"
        message = f"Bus {vehicle_plate} {verb} stop {stop_name}".replace("  ", " ")
        payload = {
            "stop_event_id": stop_event.id,
            "stop_id": stop_event.stop_id,
            "vehicle_id": stop_event.vehicle_id,
            "route_id": stop_event.route_id,
            "status": stop_event.status.value,
            "occurred_at": stop_event.occurred_at.isoformat(),
            "expires_at": stop_event.expires_at.isoformat(),
        }
        event = await self.notify("stop", stop_event.stop_id, kind, message, payload)
        self.manager.publish("vehicle", stop_event.vehicle_id, {**event, "scope": "vehicle", "key": str(stop_event.vehicle_id)})
        self.manager.publish("route", stop_event.route_id, {**event, "scope": "route", "key": str(stop_event.route_id)})
        return event

    async def attendance_changed(self, record, student_name: str) -> Dict[str, Any]:
        kind = NotificationKind(record.status.value)
        labels = {
            NotificationKind.PRESENT_AT_STOP: "is at the stop",
            NotificationKind.BOARDED: "boarded the bus",
            NotificationKind.ABSENT: "was marked absent",
        }
        message = f"{student_name} {labels.get(kind, record.status.value)}"
        payload = {
            "student_id": record.student_id,
            "route_id": record.route_id,
            "stop_id": record.stop_id,
            "service_date": record.service_date.isoformat(),
            "status": record.status.value,
        }
        return await self.notify("student", record.student_id, kind, message, payload)

    async def trip_transition(self, trip, kind: NotificationKind, route_name: str) -> Dict[str, Any]:
        started = kind == NotificationKind.TRIP_STARTED
        message = f"Trip on route {route_name} {'started' if started else 'completed'}"
        payload = {
            "trip_id": trip.id,
            "vehicle_id": trip.vehicle_id,
            "route_id": trip.route_id,
            "service_date": trip.service_date.isoformat(),
            "state": trip.state.value,
        }
        event = await self.notify("route", trip.route_id, kind, message, payload)
        self.manager.publish("vehicle", trip.vehicle_id, {**event, "scope": "vehicle", "key": str(trip.vehicle_id)})
        return event

    def position(self, vehicle_id: int, payload: Dict[str, Any]) -> int:
        """Live-only: positions are recoverable from the last-known projection."""
        event = self._envelope(f"pos:{uuid.uuid4().hex}", "vehicle", vehicle_id,
                               NotificationKind.POSITION, "position update", payload)
        return self.manager.publish("vehicle", vehicle_id, event)

    def chat_message(self, conversation_id: str, sender_id: int, body: str,
                     message_id: Optional[str] = None) -> Dict[str, Any]:
        """Live-only: chat messages are stored by the chat collaborator."""
        event = self._envelope(
            f"chat:{message_id or uuid.uuid4().hex}", "conversation", conversation_id,
            NotificationKind.CHAT_MESSAGE, body,
            {"conversation_id": conversation_id, "sender_id": sender_id},
        )
        self.manager.publish("conversation", conversation_id, event)
        return event

    # Notification store

    async def scopes_for_session(self, ctx: SessionContext) -> List[str]:
        """Recipient scopes a session is entitled to read."""
        scopes = [scope_name("user", ctx.user_id)]

        students: List[Student] = []
        if ctx.role == UserRole.STUDENT:
            result = await self.db.execute(select(Student).where(Student.user_id == ctx.user_id))
            students = list(result.scalars().all())
        elif ctx.role == UserRole.PARENT:
            result = await self.db.execute(select(Student).where(Student.parent_id == ctx.user_id))
            students = list(result.scalars().all())
        elif ctx.role == UserRole.DRIVER:
            result = await self.db.execute(select(Vehicle.id).where(Vehicle.driver_id == ctx.user_id))
            vehicle_id = result.scalar_one_or_none()
            if vehicle_id is not None:
                scopes.append(scope_name("vehicle", vehicle_id))

        for student in students:
            scopes.append(scope_name("student", student.id))
            if student.stop_id:
                scopes.append(scope_name("stop", student.stop_id))
            if student.route_id:
                scopes.append(scope_name("route", student.route_id))

        return list(dict.fromkeys(scopes))

    async def list_for_scopes(
        self,
        scopes: List[str],
        since: Optional[datetime] = None,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        query = select(Notification).where(Notification.recipient_scope.in_(scopes))
        if since is not None:
            query = query.where(Notification.created_at > since)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        query = query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: int, scopes: List[str]) -> bool:
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_scope.in_(scopes)
        ).values(is_read=True, read_at=self.clock())
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount > 0

    async def mark_all_read(self, scopes: List[str]) -> int:
        stmt = update(Notification).where(
            Notification.recipient_scope.in_(scopes),
            or_(Notification.is_read == False, Notification.is_read.is_(None))  # noqa: E712
        ).values(is_read=True, read_at=self.clock())
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount
