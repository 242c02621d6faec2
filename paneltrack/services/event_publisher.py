"""
In-process domain event publisher.

Services queue events while they work and publish them only after their
transaction has committed, so subscribers never observe state that was
rolled back. Transport (websocket fan-out to station displays, etc.) is the
subscriber's concern.

Events:
    panel.registered, panel.completed, panel.failed, inspection.recorded,
    alert.raised, alert.resolved, mo.completed
"""
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from paneltrack.db_types import utc_now

logger = logging.getLogger(__name__)


PANEL_REGISTERED = "panel.registered"
PANEL_COMPLETED = "panel.completed"
PANEL_FAILED = "panel.failed"
INSPECTION_RECORDED = "inspection.recorded"
ALERT_RAISED = "alert.raised"
ALERT_RESOLVED = "alert.resolved"
MO_COMPLETED = "mo.completed"

ALL_EVENTS = (
    PANEL_REGISTERED,
    PANEL_COMPLETED,
    PANEL_FAILED,
    INSPECTION_RECORDED,
    ALERT_RAISED,
    ALERT_RESOLVED,
    MO_COMPLETED,
)


@dataclass
class DomainEvent:
    name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utc_now)


EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


class EventPublisher:
    """Maps event names to handlers. '*' subscribes to everything."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if event_name != "*" and event_name not in ALL_EVENTS:
            raise ValueError(f"Unknown event: {event_name}")
        self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler in self._handlers.get(event_name, []):
            self._handlers[event_name].remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        """Deliver to every handler; one failing handler does not stop the others."""
        for handler in self._handlers.get(event.name, []) + self._handlers.get("*", []):
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Event handler {handler!r} failed for {event.name}")

    async def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            await self.publish(event)


class EventBuffer:
    """Events collected inside a unit of work, flushed after commit."""

    def __init__(self, publisher: Optional[EventPublisher] = None):
        self._publisher = publisher or get_event_publisher()
        self._events: List[DomainEvent] = []

    def add(self, name: str, **payload) -> None:
        self._events.append(DomainEvent(name=name, payload=payload))

    def discard(self) -> None:
        self._events.clear()

    @property
    def events(self) -> List[DomainEvent]:
        return list(self._events)

    async def flush(self) -> None:
        events, self._events = self._events, []
        await self._publisher.publish_all(events)


_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """Process-wide publisher singleton."""
    global _publisher
    if _publisher is None:
        _publisher = EventPublisher()
    return _publisher


def reset_event_publisher() -> EventPublisher:
    global _publisher
    _publisher = EventPublisher()
    return _publisher
