from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from engine.errors import ConcurrencyConflict, InvariantViolation, ValidationError
from engine.models import ActorSource, GameStatus

from .config import StrategyId, parse_simulator_config
from .queue import SimulatorJob, SimulatorJobQueue
from .rng import decision_rng
from .scheduler import BotScheduler
from .strategies import decide

if TYPE_CHECKING:
    from host.service import TableService

LOGGER = logging.getLogger("simulator")


class SimulatorWorker:
    """Drains due simulator jobs: one bot decision per job, fed back through the table service."""

    def __init__(self, service: "TableService", queue: SimulatorJobQueue, scheduler: BotScheduler) -> None:
        self.service = service
        self.queue = queue
        self.scheduler = scheduler

    def process_due_simulator_jobs(self, limit: int = 5) -> int:
        """Claim up to ``limit`` due jobs and run them; returns how many applied an action."""
        processed = 0
        for job in self.queue.claim_due(limit):
            try:
                applied = self._run(job)
            except (ValidationError, ConcurrencyConflict) as exc:
                # The table moved on; a stale decision is never retried.
                LOGGER.info("Job %s dropped: %s", job.id, exc.msg)
                self.queue.complete(job.id)
                continue
            except InvariantViolation as exc:
                LOGGER.exception("Job %s hit an invariant violation", job.id)
                self.queue.fail(job.id, str(exc))
                raise
            except Exception as exc:
                LOGGER.warning("Job %s attempt %s failed: %s", job.id, job.attempts, exc)
                self.queue.fail(job.id, str(exc) or exc.__class__.__name__, self.queue.retry_delay(job.attempts))
                continue
            self.queue.complete(job.id)
            if applied:
                processed += 1
        return processed

    def _run(self, job: SimulatorJob) -> bool:
        game = self.service.load_game(job.game_id)
        if game is None:
            return False
        sim = parse_simulator_config(game.simulator_config)
        if not sim.active:
            return False
        if game.status != GameStatus.ACTIVE or game.current_player_turn is None:
            return False
        if game.hand_id != job.hand_id:
            return False
        player_id = game.current_player_turn
        if job.player_id is not None and job.player_id != player_id:
            return False
        strategy = sim.strategy_for(player_id)
        if strategy is None or strategy.id == StrategyId.HUMAN:
            return False

        action_count = self.service.repository.count_actions(game.id, game.hand_id)
        snapshot = self.service.engine.snapshot(game, viewer_id=player_id, action_count=action_count)
        decision = decide(
            strategy,
            snapshot,
            player_id,
            decision_rng(sim.seed, game.id, game.hand_id, action_count),
            decisions_made=self.service.repository.count_actions(game.id, player_id=player_id),
        )
        if decision is None:
            LOGGER.debug("Strategy %s abstained for %s", strategy.id.value, player_id)
            return False

        updated = self.service.apply_action(
            game.id,
            player_id,
            decision.action,
            decision.amount,
            expected_hand_id=job.hand_id,
            expected_version=game.version,
            actor_source=ActorSource.BOT,
            bot_strategy=strategy.id.value,
            schedule_bots=False,
        )
        # Keep an all-bot table moving without outside polling.
        self.scheduler.maybe_schedule(updated, action_count + 1)
        return True
