"""Tagged game events and the publisher that pushes them through a swappable transport."""

from .events import GameEvent, GameEventType, events_for
from .publisher import EVENT_NAME, EventPublisher, Transport, topic_for
from .transports import InMemoryTransport, WebSocketHub

__all__ = [
    "GameEvent",
    "GameEventType",
    "events_for",
    "EVENT_NAME",
    "EventPublisher",
    "Transport",
    "topic_for",
    "InMemoryTransport",
    "WebSocketHub",
]
