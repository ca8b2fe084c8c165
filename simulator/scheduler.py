from __future__ import annotations

import logging
from typing import Optional

from engine.models import Game, GameStatus

from .config import WorkerConfig, parse_simulator_config
from .queue import SimulatorJobQueue
from .rng import decision_rng, jitter_ms

LOGGER = logging.getLogger("simulator")


def schedule_key(game_id: str, hand_id: int, player_id: str) -> str:
    return f"{game_id}:{hand_id}:{player_id}"


class BotScheduler:
    """Enqueues a job whenever a bot-controlled seat holds the turn."""

    def __init__(self, queue: SimulatorJobQueue, config: Optional[WorkerConfig] = None) -> None:
        self.queue = queue
        self.config = config or WorkerConfig()

    def maybe_schedule(self, game: Game, action_count: int = 0) -> Optional[int]:
        if not self.config.enabled:
            return None
        if game.status != GameStatus.ACTIVE or game.current_player_turn is None:
            return None
        sim = parse_simulator_config(game.simulator_config)
        player_id = game.current_player_turn
        if not sim.active or not sim.is_bot(player_id):
            return None

        delay = jitter_ms(sim.delays, decision_rng(sim.seed, game.id, game.hand_id, action_count))
        key = schedule_key(game.id, game.hand_id, player_id)
        job_id = self.queue.enqueue(
            game.id,
            game.hand_id,
            player_id=player_id,
            delay_ms=delay,
            payload={"scheduleKey": key},
        )
        if job_id is not None:
            LOGGER.debug("Scheduled bot turn %s in %sms (job %s)", key, delay, job_id)
        return job_id
