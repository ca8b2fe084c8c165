from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from engine.game import TableEngine
from engine.models import ActionType, Game, GameStatus, TableConfig
from host.service import TableService
from realtime.publisher import EventPublisher
from realtime.transports import InMemoryTransport
from simulator.config import QueueConfig
from simulator.queue import SimulatorJobQueue
from storage.db import Database


class FakeClock:
    """Millisecond clock for the job queue."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def make_table(
    stacks: Sequence[int] = (1_000, 1_000, 1_000),
    *,
    small_blind: int = 10,
    big_blind: int = 20,
    game_id: str = "g1",
) -> Tuple[TableEngine, Game]:
    """Engine plus a waiting game with players p0, p1, ... seated in order."""
    engine = TableEngine(
        TableConfig(seats=max(len(stacks), 2), small_blind=small_blind, big_blind=big_blind)
    )
    game = Game(id=game_id, small_blind=small_blind, big_blind=big_blind)
    for idx, stack in enumerate(stacks):
        engine.add_player(game, f"p{idx}", stack)
    return engine, game


def perform_actions(
    engine: TableEngine,
    game: Game,
    actions: Iterable[Tuple[str, ActionType, Optional[int]]],
) -> None:
    """Apply a scripted sequence of (player_id, action, amount)."""
    for player_id, action, amount in actions:
        engine.apply_action(game, player_id, action, amount)


def auto_complete_hand(engine: TableEngine, game: Game) -> None:
    """Check or call until the hand is over."""
    while game.status == GameStatus.ACTIVE and game.current_player_turn is not None:
        actor = game.current_player_turn
        legal = engine.legal_actions(game, actor)
        if ActionType.CHECK in legal.actions:
            engine.apply_action(game, actor, ActionType.CHECK)
        else:
            engine.apply_action(game, actor, ActionType.CALL)


def make_database(tmp_path: Optional[Path] = None) -> Database:
    url = f"sqlite:///{tmp_path / 'poker.db'}" if tmp_path is not None else "sqlite://"
    db = Database(url)
    db.create_all()
    return db


def make_service(
    tmp_path: Optional[Path] = None,
    *,
    clock: Optional[FakeClock] = None,
    auto_start_players: int = 0,
    starting_stack: int = 1_000,
    queue_config: Optional[QueueConfig] = None,
) -> Tuple[TableService, InMemoryTransport]:
    db = make_database(tmp_path)
    queue = SimulatorJobQueue(db, queue_config, clock=clock or FakeClock())
    transport = InMemoryTransport()
    service = TableService(
        db,
        publisher=EventPublisher(transport),
        table_config=TableConfig(starting_stack=starting_stack),
        queue=queue,
        auto_start_players=auto_start_players,
    )
    return service, transport


def chips_in_play(game: Game) -> int:
    return sum(p.stack for p in game.players) + game.pot
