from __future__ import annotations

import logging
import uuid
from datetime import timezone
from typing import Any, Dict, List, Optional, Union

from engine.errors import ConcurrencyConflict, TransientInfraError, ValidationError
from engine.game import TableEngine
from engine.models import (
    ActionType,
    ActorSource,
    Game,
    GameSnapshot,
    GameStatus,
    Player,
    TableConfig,
)
from engine.timeouts import TurnKey
from realtime.events import GameEvent, events_for
from realtime.publisher import EventPublisher
from simulator.config import SimulatorConfig, WorkerConfig, parse_simulator_config
from simulator.queue import SimulatorJobQueue
from simulator.scheduler import BotScheduler
from simulator.worker import SimulatorWorker
from storage.db import Database
from storage.repository import ActionDraft, GameRepository

LOGGER = logging.getLogger("table_service")

# TableService is the only writer of game rows. Every mutation follows the same
# shape: load a fresh copy, let the engine mutate it in memory, then save it
# with a version check. Publishing and bot scheduling happen after the commit.

_CHIP_ACTIONS = (ActionType.BET, ActionType.RAISE, ActionType.CALL)


class TableService:
    def __init__(
        self,
        db: Database,
        publisher: Optional[EventPublisher] = None,
        table_config: Optional[TableConfig] = None,
        queue: Optional[SimulatorJobQueue] = None,
        worker_config: Optional[WorkerConfig] = None,
        auto_start_players: int = 2,
    ) -> None:
        self.db = db
        self.repository = GameRepository(db)
        self.engine = TableEngine(table_config)
        self.publisher = publisher
        self.queue = queue or SimulatorJobQueue(db)
        self.scheduler = BotScheduler(self.queue, worker_config)
        self.worker = SimulatorWorker(self, self.queue, self.scheduler)
        self.auto_start_players = auto_start_players

    # Games and seats -------------------------------------------------

    def create_game(
        self,
        small_blind: Optional[int] = None,
        big_blind: Optional[int] = None,
        turn_ms: Optional[int] = None,
        simulator_config: Optional[Dict[str, Any]] = None,
        game_id: Optional[str] = None,
    ) -> Game:
        config = self.engine.config
        small_blind = config.small_blind if small_blind is None else small_blind
        big_blind = config.big_blind if big_blind is None else big_blind
        turn_ms = config.turn_ms if turn_ms is None else turn_ms
        if small_blind < 0 or big_blind < small_blind:
            raise ValidationError("Blinds must satisfy 0 <= small <= big", code="BAD_BLINDS")
        if turn_ms <= 0:
            raise ValidationError("Turn clock must be positive", code="BAD_CONFIG")
        sim = parse_simulator_config(simulator_config) if simulator_config is not None else None

        game = Game(
            id=game_id or str(uuid.uuid4()),
            small_blind=small_blind,
            big_blind=big_blind,
            turn_ms=turn_ms,
            simulator_config=sim.to_json() if sim else None,
        )
        self.repository.create(game)
        LOGGER.info("Game %s created (blinds %s/%s)", game.id, small_blind, big_blind)
        return game

    def load_game(self, game_id: str) -> Optional[Game]:
        return self.repository.load(game_id)

    def get_game(self, game_id: str) -> Game:
        game = self.repository.load(game_id)
        if game is None:
            raise ValidationError(f"Game {game_id} not found", code="UNKNOWN_GAME")
        return game

    def join_game(
        self,
        game_id: str,
        user_id: str,
        stack: Optional[int] = None,
        display_name: Optional[str] = None,
    ) -> Player:
        game = self.get_game(game_id)
        version = game.version
        existing = next((p for p in game.players if p.user_id == user_id), None)
        if existing is not None:
            return existing

        player = self.engine.add_player(
            game,
            str(uuid.uuid4()),
            self.engine.config.starting_stack if stack is None else stack,
            user_id=user_id,
            display_name=display_name,
        )
        events: List[Dict[str, object]] = []
        if (
            self.auto_start_players
            and game.status == GameStatus.WAITING
            and len(game.players) >= self.auto_start_players
        ):
            events = self._deal(game)
        self.repository.save(game, version)
        LOGGER.info("User %s joined %s at seat %s", user_id, game_id, player.seat)
        self._after_commit(game, events)
        return player

    def set_connected(self, game_id: str, player_id: str, connected: bool) -> Game:
        game = self.get_game(game_id)
        version = game.version
        player = game.player(player_id)
        if player is None:
            raise ValidationError("Player not found", code="UNKNOWN_PLAYER")
        if player.is_connected == connected:
            return game
        player.is_connected = connected
        self.repository.save(game, version)
        self._after_commit(game, [], schedule_bots=False)
        return game

    # Hands and actions -----------------------------------------------

    def start_hand(self, game_id: str, seed: Optional[Union[int, str]] = None) -> Game:
        game = self.get_game(game_id)
        version = game.version
        events = self._deal(game, seed)
        self.repository.save(game, version)
        self._after_commit(game, events)
        return game

    def _deal(self, game: Game, seed: Optional[Union[int, str]] = None) -> List[Dict[str, object]]:
        sim = parse_simulator_config(game.simulator_config)
        if seed is None and sim.seed is not None:
            seed = f"{sim.seed}:{game.hand_id + 1}"
        events = self.engine.start_hand(game, seed=seed, preset=sim.deck_script or ())
        LOGGER.info("Hand %s started in %s", game.hand_id, game.id)
        return events

    def apply_action(
        self,
        game_id: str,
        player_id: str,
        action: Union[ActionType, str],
        amount: Optional[int] = None,
        expected_hand_id: Optional[int] = None,
        expected_version: Optional[int] = None,
        actor_source: ActorSource = ActorSource.HUMAN,
        bot_strategy: Optional[str] = None,
        schedule_bots: bool = True,
    ) -> Game:
        """Validate and apply one action, then persist it with its log row.

        Raises ValidationError for illegal actions and ConcurrencyConflict when
        the hand or game version moved since the caller looked at it.
        """
        game = self.get_game(game_id)
        version = game.version
        if expected_version is not None and expected_version != version:
            raise ConcurrencyConflict(f"Game {game_id} changed since version {expected_version}")
        if expected_hand_id is not None and expected_hand_id != game.hand_id:
            raise ConcurrencyConflict(f"Hand {expected_hand_id} is over in {game_id}")

        try:
            outcome = self.engine.apply_action(game, player_id, action, amount)
        except ValidationError as exc:
            LOGGER.warning("Rejected %s by %s in %s: %s", action, player_id, game_id, exc.msg)
            raise

        draft = ActionDraft(
            player_id=player_id,
            hand_id=game.hand_id,
            action_type=outcome.requested,
            amount=outcome.amount if outcome.resolved in _CHIP_ACTIONS else None,
            actor_source=actor_source,
            bot_strategy=bot_strategy,
        )
        self.repository.save(game, version, expected_hand_id=game.hand_id, action=draft)
        LOGGER.debug(
            "Applied %s (%s) by %s in %s for %s",
            outcome.resolved.value,
            outcome.requested.value,
            player_id,
            game_id,
            outcome.amount,
        )
        if outcome.hand_complete:
            LOGGER.info("Hand %s finished in %s", game.hand_id, game_id)
        self._after_commit(game, outcome.events, schedule_bots=schedule_bots)
        return game

    def timeout_turn(self, key: TurnKey) -> Optional[Game]:
        """Apply a system timeout if ``key`` still holds the turn; otherwise do nothing."""
        if self.current_turn(key.game_id) != key:
            return None
        try:
            return self.apply_action(
                key.game_id,
                key.player_id,
                ActionType.TIMEOUT,
                expected_hand_id=key.hand_id,
                actor_source=ActorSource.SYSTEM,
            )
        except (ValidationError, ConcurrencyConflict) as exc:
            LOGGER.info("Timeout for %s skipped: %s", key, exc.msg)
            return None

    def _after_commit(self, game: Game, engine_events, schedule_bots: bool = True) -> None:
        match_over = game.status == GameStatus.COMPLETED and self.engine.is_match_over(game)
        for event in events_for(game, engine_events, match_over=match_over):
            try:
                self.publish_game_event(game.id, event)
            except TransientInfraError as exc:
                # The state is committed; subscribers catch up on the next update.
                LOGGER.warning("Publish for %s failed: %s", game.id, exc.msg)
        if schedule_bots:
            try:
                self.scheduler.maybe_schedule(game, self.repository.count_actions(game.id, game.hand_id))
            except TransientInfraError as exc:
                LOGGER.warning("Bot scheduling for %s failed: %s", game.id, exc.msg)

    # Views -----------------------------------------------------------

    def to_snapshot(self, game_id: str, viewer_id: Optional[str] = None, reveal_all: bool = False) -> GameSnapshot:
        game = self.get_game(game_id)
        actions = self.repository.actions(game_id, game.hand_id)
        return self.engine.snapshot(
            game,
            viewer_id=viewer_id,
            reveal_all=reveal_all,
            last_action=actions[-1].action_type if actions else None,
            action_count=len(actions),
        )

    def current_turn(self, game_id: str) -> Optional[TurnKey]:
        game = self.repository.load(game_id)
        if game is None or game.status != GameStatus.ACTIVE or game.current_player_turn is None:
            return None
        return TurnKey(game.id, game.hand_id, game.current_player_turn)

    def turn_deadline(self, game: Game) -> Optional[float]:
        """Epoch seconds when the current turn expires."""
        if game.updated_at is None or game.current_player_turn is None:
            return None
        return game.updated_at.replace(tzinfo=timezone.utc).timestamp() + game.turn_ms / 1000

    def hand_history(self, game_id: str, hand_id: Optional[int] = None) -> Dict[str, Any]:
        game = self.get_game(game_id)
        hand_id = game.hand_id if hand_id is None else hand_id
        history: Dict[str, Any] = {
            "gameId": game.id,
            "handId": hand_id,
            "actions": [
                {
                    "id": record.id,
                    "playerId": record.player_id,
                    "actionType": record.action_type.value,
                    "amount": record.amount,
                    "actorSource": record.actor_source.value,
                    "botStrategy": record.bot_strategy,
                    "createdAt": record.created_at.isoformat() + "Z",
                }
                for record in self.repository.actions(game_id, hand_id)
            ],
        }
        if hand_id == game.hand_id:
            history["board"] = list(game.community_cards)
            history["players"] = [
                {"id": p.id, "seat": p.seat, "stack": p.stack, "hasWon": p.has_won, "handName": p.hand_name}
                for p in game.seated()
            ]
        return history

    # Simulator controls ----------------------------------------------

    def update_simulator_config(self, game_id: str, config: Union[SimulatorConfig, Dict[str, Any]]) -> SimulatorConfig:
        sim = parse_simulator_config(config)
        game = self.get_game(game_id)
        version = game.version
        game.simulator_config = sim.to_json()
        self.repository.save(game, version)
        LOGGER.info("Simulator for %s: enabled=%s paused=%s", game_id, sim.enabled, sim.paused)
        self._after_commit(game, [])
        return sim

    def _patch_simulator(self, game_id: str, **changes: Any) -> SimulatorConfig:
        game = self.get_game(game_id)
        current = parse_simulator_config(game.simulator_config)
        return self.update_simulator_config(game_id, current.model_copy(update=changes))

    def enable_simulator(self, game_id: str, enabled: bool = True) -> SimulatorConfig:
        return self._patch_simulator(game_id, enabled=enabled)

    def pause_simulator(self, game_id: str) -> SimulatorConfig:
        return self._patch_simulator(game_id, paused=True)

    def resume_simulator(self, game_id: str) -> SimulatorConfig:
        return self._patch_simulator(game_id, paused=False)

    def enqueue_simulator_job(
        self,
        game_id: str,
        hand_id: int,
        player_id: Optional[str] = None,
        delay_ms: int = 0,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        return self.queue.enqueue(game_id, hand_id, player_id=player_id, delay_ms=delay_ms, payload=payload)

    def process_due_simulator_jobs(self, limit: int = 5) -> int:
        return self.worker.process_due_simulator_jobs(limit)

    def publish_game_event(self, game_id: str, event: GameEvent) -> None:
        if self.publisher is None:
            return
        self.publisher.publish_game_event(game_id, event)
