from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

from engine.errors import TransientInfraError

from .events import GameEvent

LOGGER = logging.getLogger("realtime")

EVENT_NAME = "UPDATE"


class Transport(Protocol):
    def publish(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None: ...


def topic_for(game_id: str) -> str:
    return f"topic:{game_id}"


class EventPublisher:
    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def publish_game_event(self, game_id: str, event: GameEvent) -> None:
        topic = topic_for(game_id)
        try:
            self.transport.publish(topic, EVENT_NAME, {"event": event.to_wire()})
        except TransientInfraError:
            raise
        except Exception as exc:
            raise TransientInfraError(f"Broadcast to {topic} failed: {exc}") from exc
        LOGGER.debug("Published %s to %s", event.type.value, topic)
