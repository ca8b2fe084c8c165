from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import websockets
from websockets.asyncio.server import ServerConnection

from engine.errors import TransientInfraError

LOGGER = logging.getLogger("realtime")

Subscriber = Callable[[str, Dict[str, Any]], None]


class InMemoryTransport:
    """Records every publish and fans it out to local callbacks."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, str, Dict[str, Any]]] = []
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.messages.append((topic, event_name, payload))
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            callback(event_name, payload)

    def for_topic(self, topic: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [payload for recorded, _, payload in self.messages if recorded == topic]


class WebSocketHub:
    """Topic subscriptions for connected sockets on the host server.

    ``publish`` may be called from worker threads; delivery always happens on
    the loop the hub was bound to.
    """

    def __init__(self) -> None:
        self._topics: Dict[str, Set[ServerConnection]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def subscribe(self, topic: str, websocket: ServerConnection) -> None:
        self._topics.setdefault(topic, set()).add(websocket)

    def unsubscribe(self, topic: str, websocket: ServerConnection) -> None:
        sockets = self._topics.get(topic)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self._topics[topic]

    def drop(self, websocket: ServerConnection) -> None:
        for topic in list(self._topics):
            self.unsubscribe(topic, websocket)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def publish(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            raise TransientInfraError("WebSocket hub is not running")
        body = {
            "type": "event",
            "v": 1,
            "ts": datetime.now(timezone.utc).isoformat(),
            "topic": topic,
            "name": event_name,
        }
        body.update(payload)
        message = json.dumps(body, default=str)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn(topic, message)
        else:
            loop.call_soon_threadsafe(self._spawn, topic, message)

    def _spawn(self, topic: str, message: str) -> None:
        task = asyncio.get_running_loop().create_task(self._broadcast(topic, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _broadcast(self, topic: str, message: str) -> None:
        targets = list(self._topics.get(topic, ()))
        if not targets:
            return
        results = await asyncio.gather(*(socket.send(message) for socket in targets), return_exceptions=True)
        for socket, result in zip(targets, results):
            if isinstance(result, websockets.ConnectionClosed):
                self.drop(socket)
            elif isinstance(result, Exception):
                LOGGER.warning("Send to subscriber on %s failed: %s", topic, result)

    async def flush(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
