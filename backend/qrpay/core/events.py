"""Event bus for real-time payment status streaming over SSE."""

import asyncio
from typing import Dict, Any, AsyncGenerator

from qrpay.core.clock import utcnow


class _Subscription:
    """A subscriber's queue plus whether the bus has dropped it."""

    def __init__(self, max_pending: int):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.dropped = False


class EventBus:
    """
    In-memory event bus using asyncio.Queue for pub/sub pattern.

    The presenting UI subscribes to learn when a displayed QR was paid or
    expired without polling the payment endpoint.
    """

    def __init__(self):
        """Initialize the event bus with an empty subscriber list."""
        self._subscribers: list[_Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event_type: Type of event (e.g., "payment_created", "payment_paid")
            data: Event payload data
        """
        event = {
            "type": event_type,
            "data": data,
            "timestamp": utcnow().isoformat()
        }

        dead = []
        for subscription in self._subscribers:
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                dead.append(subscription)

        for subscription in dead:
            subscription.dropped = True
            self._subscribers.remove(subscription)

    async def subscribe(self, max_pending: int = 100) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Subscribe to events and receive them as an async generator.

        A subscriber that falls more than ``max_pending`` events behind is
        dropped: it still receives what was already queued, then the
        generator ends.

        Usage:
            async for event in event_bus.subscribe():
                print(event)
        """
        subscription = _Subscription(max_pending)
        self._subscribers.append(subscription)

        try:
            while not (subscription.dropped and subscription.queue.empty()):
                event = await subscription.queue.get()
                yield event
        finally:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)


# Global event bus instance
event_bus = EventBus()
