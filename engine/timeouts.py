from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set, Union

LOGGER = logging.getLogger("turn_timeouts")

OVERDUE_GRACE_MS = 1_000


@dataclass(frozen=True)
class TurnKey:
    game_id: str
    hand_id: int
    player_id: str


TimeoutCallback = Callable[[TurnKey], Union[None, Awaitable[None]]]


@dataclass
class _Entry:
    token: str
    handle: asyncio.TimerHandle
    on_timeout: TimeoutCallback


class TurnTimeoutCoordinator:
    """One timer per turn, however many observers are watching that turn.

    The first observer to schedule a key owns it and gets a token back; later
    observers get ``None``. A firing timer only acts when its token still owns
    the entry and ``current_turn`` still reports the same key.
    """

    def __init__(
        self,
        current_turn: Callable[[str], Optional[TurnKey]],
        clock: Callable[[], float] = time.time,
        overdue_grace_ms: int = OVERDUE_GRACE_MS,
    ) -> None:
        self._current_turn = current_turn
        self._clock = clock
        self._overdue_grace_ms = overdue_grace_ms
        self._entries: Dict[TurnKey, _Entry] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def schedule(
        self,
        key: TurnKey,
        on_timeout: TimeoutCallback,
        delay_ms: Optional[int] = None,
        deadline_at: Optional[float] = None,
    ) -> Optional[str]:
        if self._closed:
            raise RuntimeError("Timeout coordinator is closed")
        if key in self._entries:
            return None
        if delay_ms is None:
            if deadline_at is None:
                raise ValueError("Either delay_ms or deadline_at is required")
            delay_ms = int((deadline_at - self._clock()) * 1000)
            if delay_ms <= 0:
                delay_ms = self._overdue_grace_ms

        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(delay_ms, 0) / 1000, self._fire, key, token)
        self._entries[key] = _Entry(token=token, handle=handle, on_timeout=on_timeout)
        LOGGER.debug("Timer set for %s in %sms", key, delay_ms)
        return token

    def cancel(self, key: TurnKey, token: Optional[str]) -> bool:
        entry = self._entries.get(key)
        if entry is None or token is None or entry.token != token:
            return False
        entry.handle.cancel()
        del self._entries[key]
        return True

    def owner(self, key: TurnKey) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.token if entry else None

    def pending(self) -> int:
        return len(self._entries)

    def watcher(self, on_timeout: TimeoutCallback) -> "TurnWatcher":
        return TurnWatcher(self, on_timeout)

    def _fire(self, key: TurnKey, token: str) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.token != token:
            return
        task = asyncio.get_running_loop().create_task(self._resolve(key, entry))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    async def _resolve(self, key: TurnKey, entry: _Entry) -> None:
        # The lookup may hit the database, so it runs off the event loop.
        live = await asyncio.to_thread(self._current_turn, key.game_id)
        if self._entries.get(key) is not entry:
            LOGGER.debug("Timer for %s was cancelled during its turn check", key)
            return
        del self._entries[key]
        if live != key:
            LOGGER.debug("Turn %s moved on before its timer fired", key)
            return
        LOGGER.info("Turn timed out: game=%s hand=%s player=%s", key.game_id, key.hand_id, key.player_id)
        result = entry.on_timeout(key)
        if asyncio.iscoroutine(result):
            await result

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Timeout handler failed", exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait for in-flight timeout handlers to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def close(self) -> None:
        self._closed = True
        for entry in self._entries.values():
            entry.handle.cancel()
        self._entries.clear()
        for task in list(self._tasks):
            task.cancel()


class TurnWatcher:
    """Per-observer handle: tracks one turn at a time and releases what it owns."""

    def __init__(self, coordinator: TurnTimeoutCoordinator, on_timeout: TimeoutCallback) -> None:
        self._coordinator = coordinator
        self._on_timeout = on_timeout
        self._key: Optional[TurnKey] = None
        self._token: Optional[str] = None

    @property
    def owns_timer(self) -> bool:
        return self._token is not None and self._key is not None and self._coordinator.owner(self._key) == self._token

    def observe(
        self,
        key: Optional[TurnKey],
        delay_ms: Optional[int] = None,
        deadline_at: Optional[float] = None,
    ) -> Optional[str]:
        if key is not None and key == self._key and self.owns_timer:
            return self._token
        if key != self._key:
            self.release()
        self._key = key
        if key is None:
            return None
        # Another observer may already own this turn; retry on the next observation.
        self._token = self._coordinator.schedule(key, self._on_timeout, delay_ms=delay_ms, deadline_at=deadline_at)
        return self._token

    def release(self) -> None:
        if self._key is not None and self._token is not None:
            self._coordinator.cancel(self._key, self._token)
        self._token = None

    def close(self) -> None:
        self.release()
        self._key = None
