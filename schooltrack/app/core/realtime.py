"""
Reference-counted push subscriptions.

Views subscribe to a logical channel keyed by (scope, key), e.g.
("vehicle", "7") or ("stop", "12"). All subscribers of the same channel share
one underlying channel object; it is created on the first subscribe and torn
down when the last subscriber leaves. Subscribe/unsubscribe are idempotent.

Delivery is best effort: each subscriber owns a bounded queue and events are
dropped for slow consumers. There is no acknowledgment and no retry queue;
clients recover by re-querying after reconnecting.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from schooltrack.app.core.config import settings

logger = logging.getLogger(__name__)

ChannelKey = Tuple[str, str]


@dataclass
class Subscription:
    """Handle returned to one subscriber."""
    subscriber_id: str
    channel: ChannelKey
    queue: asyncio.Queue

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


@dataclass
class _Channel:
    key: ChannelKey
    subscribers: Dict[str, Subscription] = field(default_factory=dict)
    dropped: int = 0


class SubscriptionManager:
    def __init__(self, queue_size: int = 10):
        self.queue_size = queue_size
        self._channels: Dict[ChannelKey, _Channel] = {}
        self.channels_opened = 0

    @staticmethod
    def _key(scope: str, key: Any) -> ChannelKey:
        return (str(scope), str(key))

    def subscribe(self, scope: str, key: Any, subscriber_id: Optional[str] = None) -> Subscription:
        """
        Join the (scope, key) channel.

        Subscribing again with the same `subscriber_id` returns the existing
        handle instead of adding a second reference.
        """
        channel_key = self._key(scope, key)
        channel = self._channels.get(channel_key)
        if channel is None:
            channel = _Channel(key=channel_key)
            self._channels[channel_key] = channel
            self.channels_opened += 1
            logger.debug("Opened channel %s:%s", *channel_key)

        subscriber_id = subscriber_id or uuid.uuid4().hex
        existing = channel.subscribers.get(subscriber_id)
        if existing is not None:
            return existing

        subscription = Subscription(
            subscriber_id=subscriber_id,
            channel=channel_key,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        channel.subscribers[subscriber_id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Leave a channel. Returns False when already unsubscribed."""
        channel = self._channels.get(subscription.channel)
        if channel is None or subscription.subscriber_id not in channel.subscribers:
            return False

        del channel.subscribers[subscription.subscriber_id]
        if not channel.subscribers:
            del self._channels[subscription.channel]
            logger.debug("Closed channel %s:%s", *subscription.channel)
        return True

    def refcount(self, scope: str, key: Any) -> int:
        channel = self._channels.get(self._key(scope, key))
        return len(channel.subscribers) if channel else 0

    def has_channel(self, scope: str, key: Any) -> bool:
        return self._key(scope, key) in self._channels

    def publish(self, scope: str, key: Any, event: Dict[str, Any]) -> int:
        """Push an event to every subscriber of the channel. Returns deliveries."""
        channel = self._channels.get(self._key(scope, key))
        if channel is None:
            return 0

        delivered = 0
        for subscription in list(channel.subscribers.values()):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                channel.dropped += 1
                logger.debug("Dropped event for slow subscriber %s on %s:%s",
                             subscription.subscriber_id, *channel.key)
        return delivered

    @asynccontextmanager
    async def subscription(self, scope: str, key: Any, subscriber_id: Optional[str] = None) -> AsyncIterator[Subscription]:
        """Subscription bound to a block; always released on exit."""
        sub = self.subscribe(scope, key, subscriber_id)
        try:
            yield sub
        finally:
            self.unsubscribe(sub)


# Process-wide manager shared by the fanout service and the SSE endpoints
subscription_manager = SubscriptionManager(queue_size=settings.realtime_queue_size)
