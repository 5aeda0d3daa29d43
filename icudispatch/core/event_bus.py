"""
Event bus carrying state-transition broadcasts.

Engines only call ``publish``; transports (the websocket manager, tests)
subscribe. Delivery is fire-and-forget: a failing subscriber is logged and
never affects the publisher or the other subscribers.
"""

import asyncio
import inspect
import logging
from typing import Callable, Dict, List, Any, Optional, Tuple
import uuid

from icudispatch.models.events import EventType, DomainEvent

logger = logging.getLogger(__name__)

# (priority, callback)
Subscription = Tuple[int, Callable]


class EventBus:
    """
    Async publish/subscribe bus.

    Supports:
    - Publishing events to all subscribers
    - Subscribing to specific event types or to everything
    - Event history for late joiners and debugging
    """

    def __init__(self, max_history: int = 1000):
        """Initialize the event bus."""
        self._subscribers: Dict[EventType, List[Subscription]] = {}
        self._global_subscribers: List[Subscription] = []
        self._event_history: List[DomainEvent] = []
        self._max_history = max_history
        self._lock = asyncio.Lock()
        self._is_running = True

        for event_type in EventType:
            self._subscribers[event_type] = []

        logger.info("EventBus initialized")

    async def publish(self, event: DomainEvent) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event: The event to publish
        """
        if not self._is_running:
            logger.warning(f"EventBus is stopped, dropping {event.event_type.value}")
            return

        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history.pop(0)

        logger.debug(f"Publishing event: {event.event_type.value} from {event.source}")

        type_subscribers = self._subscribers.get(event.event_type, [])
        all_subscribers = type_subscribers + self._global_subscribers

        # Stable sort: equal priorities run in subscription order
        all_subscribers_sorted = sorted(all_subscribers, key=lambda s: s[0], reverse=True)

        tasks = []
        for _, callback in all_subscribers_sorted:
            if inspect.iscoroutinefunction(callback):
                tasks.append(self._safe_call(callback, event))
            else:
                tasks.append(self._safe_call_sync(callback, event))

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def emit(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        source: str = "system",
        audience: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> DomainEvent:
        """Build and publish an event in one call."""
        event = DomainEvent(
            id=create_event_id(),
            event_type=event_type,
            source=source,
            payload=payload,
            audience=audience,
            correlation_id=correlation_id
        )
        await self.publish(event)
        return event

    async def _safe_call(self, callback: Callable, event: DomainEvent) -> None:
        """Safely call an async callback, catching exceptions."""
        try:
            await callback(event)
        except Exception as e:
            logger.error(f"Error in event callback: {e}", exc_info=True)

    async def _safe_call_sync(self, callback: Callable, event: DomainEvent) -> None:
        """Safely call a sync callback."""
        try:
            callback(event)
        except Exception as e:
            logger.error(f"Error in sync event callback: {e}", exc_info=True)

    @staticmethod
    def _contains(subscriptions: List[Subscription], callback: Callable) -> bool:
        return any(cb == callback for _, cb in subscriptions)

    @staticmethod
    def _without(subscriptions: List[Subscription], callback: Callable) -> List[Subscription]:
        return [(p, cb) for p, cb in subscriptions if cb != callback]

    def subscribe(
        self,
        event_type: EventType,
        callback: Callable[[DomainEvent], Any],
        priority: int = 5
    ) -> None:
        """
        Subscribe to a specific event type.

        Args:
            event_type: Type of event to subscribe to
            callback: Function to call when event occurs
            priority: Handler priority (1-10, 10 = highest)
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []

        if not self._contains(self._subscribers[event_type], callback):
            self._subscribers[event_type].append((priority, callback))
            logger.debug(f"Subscribed to {event_type.value} with priority {priority}")

    def subscribe_all(
        self,
        callback: Callable[[DomainEvent], Any],
        priority: int = 5
    ) -> None:
        """Subscribe to all events."""
        if not self._contains(self._global_subscribers, callback):
            self._global_subscribers.append((priority, callback))
            logger.debug(f"Subscribed to all events with priority {priority}")

    def unsubscribe(self, event_type: EventType, callback: Callable) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._subscribers:
            self._subscribers[event_type] = self._without(self._subscribers[event_type], callback)
            logger.debug(f"Unsubscribed from {event_type.value}")

    def unsubscribe_all(self, callback: Callable) -> None:
        """Remove a callback from all subscriptions."""
        self._global_subscribers = self._without(self._global_subscribers, callback)
        for event_type in self._subscribers:
            self._subscribers[event_type] = self._without(self._subscribers[event_type], callback)

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        limit: int = 100
    ) -> List[DomainEvent]:
        """
        Get event history, optionally filtered by type.

        Returns:
            List of events, most recent first
        """
        history = self._event_history.copy()

        if event_type:
            history = [e for e in history if e.event_type == event_type]

        history.reverse()
        return history[:limit]

    def get_subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Get number of subscribers for an event type or total."""
        if event_type:
            return len(self._subscribers.get(event_type, []))
        return sum(len(subs) for subs in self._subscribers.values()) + len(self._global_subscribers)

    def clear_history(self) -> None:
        """Clear event history."""
        self._event_history.clear()
        logger.info("Event history cleared")

    def stop(self) -> None:
        """Stop the event bus from processing events."""
        self._is_running = False
        logger.info("EventBus stopped")

    def start(self) -> None:
        """Start/resume the event bus."""
        self._is_running = True
        logger.info("EventBus started")

    @property
    def is_running(self) -> bool:
        return self._is_running


_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the process-wide event bus instance."""
    global _event_bus
    if _event_bus is None:
        from icudispatch.core.config import Config
        _event_bus = EventBus(max_history=Config.EVENT_HISTORY_SIZE)
    return _event_bus


def create_event_id() -> str:
    """Generate a unique event ID."""
    return f"evt_{uuid.uuid4().hex[:12]}"
