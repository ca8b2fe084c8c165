from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Set

import websockets
from websockets.asyncio.server import ServerConnection, serve

from engine.errors import PokerError, ValidationError
from engine.models import GameStatus
from engine.timeouts import TurnKey, TurnTimeoutCoordinator, TurnWatcher
from realtime.publisher import EventPublisher, topic_for
from realtime.transports import WebSocketHub
from simulator.queue import SimulatorJobQueue
from storage.db import Database

from .config import HostConfig
from .service import TableService

LOGGER = logging.getLogger("poker_host")

# HostServer glues the table service to WebSocket clients.
# Every network concern lives here; TableService stays transport-agnostic.
# Service calls hit the database, so they run in worker threads.


@dataclass
class ClientSession:
    websocket: ServerConnection
    players: Dict[str, str] = field(default_factory=dict)  # game_id -> player_id
    watchers: Dict[str, TurnWatcher] = field(default_factory=dict)

    @property
    def games(self) -> Set[str]:
        return set(self.watchers)


class HostServer:
    def __init__(
        self,
        config: HostConfig,
        service: Optional[TableService] = None,
        hub: Optional[WebSocketHub] = None,
    ) -> None:
        self.config = config
        self.hub = hub or WebSocketHub()
        if service is None:
            db = Database(config.db_url)
            db.create_all()
            service = TableService(
                db,
                publisher=EventPublisher(self.hub),
                table_config=config.table,
                queue=SimulatorJobQueue(db, config.queue),
                worker_config=config.worker,
                auto_start_players=config.auto_start_players,
            )
        self.service = service
        self.timeouts = TurnTimeoutCoordinator(service.current_turn)
        self.sessions: Dict[ServerConnection, ClientSession] = {}
        # Games created or joined through this host; candidates for automatic dealing.
        self.games: Set[str] = set()
        self._drain_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Callable[[ClientSession, Dict[str, object]], Awaitable[None]]] = {
            "create_game": self._handle_create_game,
            "join": self._handle_join,
            "watch": self._handle_watch,
            "start_hand": self._handle_start_hand,
            "action": self._handle_action,
            "snapshot": self._handle_snapshot,
            "simulator": self._handle_simulator,
            "history": self._handle_history,
        }

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        host = host or self.config.host
        port = port or self.config.port
        self.hub.bind(asyncio.get_running_loop())
        self._drain_task = asyncio.create_task(self._drain_loop())
        try:
            async with serve(self._handle_connection, host, port):
                LOGGER.info("Host server listening on %s:%s", host, port)
                await asyncio.Future()
        finally:
            await self.stop()

    async def stop(self) -> None:
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        self.timeouts.close()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        session = ClientSession(websocket=websocket)
        self.sessions[websocket] = session
        LOGGER.info("Client connected")
        try:
            async for raw in websocket:
                await self._dispatch(session, self._decode(raw))
        except websockets.ConnectionClosed:
            pass
        finally:
            await self._disconnect(session)

    async def _disconnect(self, session: ClientSession) -> None:
        self.sessions.pop(session.websocket, None)
        self.hub.drop(session.websocket)
        for watcher in session.watchers.values():
            watcher.close()
        for game_id, player_id in session.players.items():
            try:
                await asyncio.to_thread(self.service.set_connected, game_id, player_id, False)
            except PokerError as exc:
                LOGGER.warning("Could not mark %s disconnected: %s", player_id, exc.msg)
        # A closed watcher may have owned a turn timer; let the remaining observers re-arm it.
        for game_id in session.games:
            try:
                await self._refresh(game_id)
            except PokerError as exc:
                LOGGER.warning("Could not refresh %s after disconnect: %s", game_id, exc.msg)
        LOGGER.info("Client disconnected")

    async def _dispatch(self, session: ClientSession, message: Dict[str, object]) -> None:
        handler = self._handlers.get(str(message.get("type")))
        if handler is None:
            await self._send_error(session.websocket, code="UNKNOWN_TYPE", msg="Unsupported message type")
            return
        try:
            await handler(session, message)
        except PokerError as exc:
            await self._send_error(session.websocket, code=exc.code, msg=exc.msg)

    # Message handlers ------------------------------------------------

    async def _handle_create_game(self, session: ClientSession, message: Dict[str, object]) -> None:
        simulator = message.get("simulator")
        if simulator is not None and not isinstance(simulator, dict):
            raise ValidationError("simulator must be an object", code="BAD_SCHEMA")
        game = await asyncio.to_thread(
            self.service.create_game,
            small_blind=_int_field(message, "small_blind"),
            big_blind=_int_field(message, "big_blind"),
            turn_ms=_int_field(message, "turn_ms"),
            simulator_config=simulator,
        )
        self.games.add(game.id)
        await self._send_json(session.websocket, "game_created", {"game_id": game.id})

    async def _handle_join(self, session: ClientSession, message: Dict[str, object]) -> None:
        game_id = _str_field(message, "game_id")
        user_id = _str_field(message, "user_id")
        player = await asyncio.to_thread(
            self.service.join_game,
            game_id,
            user_id,
            stack=_int_field(message, "stack"),
            display_name=message.get("display_name") if isinstance(message.get("display_name"), str) else None,
        )
        if not player.is_connected:
            await asyncio.to_thread(self.service.set_connected, game_id, player.id, True)
        session.players[game_id] = player.id
        self._watch(session, game_id)
        LOGGER.info("Seat %s in %s claimed by %s", player.seat, game_id, user_id)
        await self._send_json(
            session.websocket,
            "welcome",
            {"game_id": game_id, "player_id": player.id, "seat": player.seat, "stack": player.stack},
        )
        await self._refresh(game_id)

    async def _handle_watch(self, session: ClientSession, message: Dict[str, object]) -> None:
        game_id = _str_field(message, "game_id")
        await asyncio.to_thread(self.service.get_game, game_id)
        self._watch(session, game_id)
        await self._send_snapshot(session, game_id)

    async def _handle_start_hand(self, session: ClientSession, message: Dict[str, object]) -> None:
        game_id = _str_field(message, "game_id")
        seed = message.get("seed")
        if seed is not None and not isinstance(seed, (int, str)):
            raise ValidationError("seed must be a number or string", code="BAD_SCHEMA")
        await asyncio.to_thread(self.service.start_hand, game_id, seed)
        await self._refresh(game_id)

    async def _handle_action(self, session: ClientSession, message: Dict[str, object]) -> None:
        game_id = _str_field(message, "game_id")
        player_id = session.players.get(game_id)
        if player_id is None:
            raise ValidationError("Join the game before acting", code="NOT_SEATED")
        action = _str_field(message, "action")
        await asyncio.to_thread(
            self.service.apply_action,
            game_id,
            player_id,
            action,
            _int_field(message, "amount"),
            expected_hand_id=_int_field(message, "hand_id"),
        )
        await self._refresh(game_id)

    async def _handle_snapshot(self, session: ClientSession, message: Dict[str, object]) -> None:
        await self._send_snapshot(session, _str_field(message, "game_id"))

    async def _handle_simulator(self, session: ClientSession, message: Dict[str, object]) -> None:
        game_id = _str_field(message, "game_id")
        command = message.get("command")
        if command == "pause":
            sim = await asyncio.to_thread(self.service.pause_simulator, game_id)
        elif command == "resume":
            sim = await asyncio.to_thread(self.service.resume_simulator, game_id)
        elif command in ("enable", "disable"):
            sim = await asyncio.to_thread(self.service.enable_simulator, game_id, command == "enable")
        elif isinstance(message.get("config"), dict):
            sim = await asyncio.to_thread(self.service.update_simulator_config, game_id, message["config"])
        else:
            raise ValidationError("Expected a command or a config object", code="BAD_SCHEMA")
        self.games.add(game_id)
        await self._send_json(session.websocket, "simulator", {"game_id": game_id, "config": sim.to_json()})

    async def _handle_history(self, session: ClientSession, message: Dict[str, object]) -> None:
        game_id = _str_field(message, "game_id")
        history = await asyncio.to_thread(self.service.hand_history, game_id, _int_field(message, "hand_id"))
        await self._send_json(session.websocket, "history", history)

    # Turn clock and pacing -------------------------------------------

    def _watch(self, session: ClientSession, game_id: str) -> None:
        self.games.add(game_id)
        self.hub.subscribe(topic_for(game_id), session.websocket)
        if game_id not in session.watchers:
            session.watchers[game_id] = self.timeouts.watcher(self._on_turn_timeout)

    async def _refresh(self, game_id: str) -> None:
        """Push personal snapshots for one game and re-arm its turn clock."""
        game = await asyncio.to_thread(self.service.load_game, game_id)
        if game is None:
            return
        key = None
        if game.status == GameStatus.ACTIVE and game.current_player_turn is not None:
            key = TurnKey(game.id, game.hand_id, game.current_player_turn)
        deadline = self.service.turn_deadline(game)
        for session in list(self.sessions.values()):
            watcher = session.watchers.get(game_id)
            if watcher is None:
                continue
            watcher.observe(key, deadline_at=deadline)
            await self._send_snapshot(session, game_id)

    async def _on_turn_timeout(self, key: TurnKey) -> None:
        game = await asyncio.to_thread(self.service.timeout_turn, key)
        if game is not None:
            await self._refresh(key.game_id)

    async def _drain_loop(self) -> None:
        interval = self.config.worker.poll_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self._tick()
            except PokerError as exc:
                LOGGER.warning("Simulator tick failed: %s", exc.msg)
            except Exception:
                LOGGER.exception("Simulator tick crashed")

    async def _tick(self) -> None:
        processed = 0
        if self.config.worker.enabled:
            processed = await asyncio.to_thread(
                self.service.process_due_simulator_jobs, self.config.worker.batch_size
            )
        watched = {game_id for session in self.sessions.values() for game_id in session.games}
        dealt = await self._deal_next_hands()
        if processed or dealt:
            for game_id in watched:
                await self._refresh(game_id)

    async def _deal_next_hands(self) -> int:
        delay_ms = self.config.next_hand_delay_ms
        if delay_ms <= 0:
            return 0
        dealt = 0
        now = time.time()
        for game_id in list(self.games):
            game = await asyncio.to_thread(self.service.load_game, game_id)
            if game is None or game.status != GameStatus.COMPLETED or game.updated_at is None:
                continue
            if not self.service.engine.can_start_hand(game):
                continue
            finished_at = game.updated_at.replace(tzinfo=timezone.utc).timestamp()
            if now - finished_at < delay_ms / 1000:
                continue
            try:
                await asyncio.to_thread(self.service.start_hand, game_id)
                dealt += 1
            except PokerError as exc:
                LOGGER.debug("Next hand for %s not dealt: %s", game_id, exc.msg)
        return dealt

    # Wire helpers ----------------------------------------------------

    async def _send_snapshot(self, session: ClientSession, game_id: str) -> None:
        snapshot = await asyncio.to_thread(self.service.to_snapshot, game_id, session.players.get(game_id))
        await self._send_json(session.websocket, "snapshot", snapshot.to_payload())

    async def _send_json(self, websocket: ServerConnection, msg_type: str, payload: Dict[str, object]) -> None:
        try:
            await websocket.send(self._envelope(msg_type, payload))
        except websockets.ConnectionClosed:
            pass

    async def _send_error(self, websocket: ServerConnection, code: str, msg: str) -> None:
        await self._send_json(websocket, "error", {"code": code, "msg": msg})

    def _envelope(self, msg_type: str, payload: Dict[str, object]) -> str:
        body = {"type": msg_type, "v": 1, "ts": datetime.now(timezone.utc).isoformat()}
        body.update(payload)
        return json.dumps(body, default=str)

    def _decode(self, raw) -> Dict[str, object]:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return {}
        return message if isinstance(message, dict) else {}


def _str_field(message: Dict[str, object], key: str) -> str:
    value = message.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} required", code="BAD_SCHEMA")
    return value.strip()


def _int_field(message: Dict[str, object], key: str) -> Optional[int]:
    value = message.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer", code="BAD_SCHEMA")
    return value
