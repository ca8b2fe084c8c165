#!/usr/bin/env python3
"""Play an all-bot game in-process through the durable job queue.

Every seat gets a strategy; the script drains due simulator jobs in a loop
(the job each bot action chains is what keeps a hand moving) and deals the
next hand once the previous one is over.

Example:
    python scripts/bot_sim.py --players 4 --hands 20 --seed 7
"""

from __future__ import annotations

import argparse
import logging
import time

from engine.models import GameStatus, TableConfig
from host.service import TableService
from realtime.publisher import EventPublisher
from realtime.transports import InMemoryTransport
from simulator.queue import SimulatorJobQueue
from storage.db import Database

LOGGER = logging.getLogger("bot_sim")

STRATEGY_ROTATION = ["tight_aggro", "call_any", "aggressive", "loose_passive", "always_fold"]


def run_simulation(args: argparse.Namespace) -> None:
    db = Database(args.db_url)
    db.create_all()
    # Jobs run on a virtual clock so delays never slow the script down.
    clock = {"now": 0}
    queue = SimulatorJobQueue(db, clock=lambda: clock["now"])
    transport = InMemoryTransport()
    service = TableService(
        db,
        publisher=EventPublisher(transport),
        table_config=TableConfig(
            seats=args.players,
            starting_stack=args.starting_stack,
            small_blind=args.sb,
            big_blind=args.bb,
        ),
        queue=queue,
        auto_start_players=0,
    )

    game = service.create_game()
    players = [service.join_game(game.id, f"bot-{idx}", display_name=f"Bot {idx}") for idx in range(args.players)]
    service.update_simulator_config(
        game.id,
        {
            "enabled": True,
            "seed": args.seed,
            "delays": {"minMs": 200, "maxMs": 800, "speedMultiplier": 1},
            "perSeatStrategy": {
                player.id: {"id": STRATEGY_ROTATION[idx % len(STRATEGY_ROTATION)]}
                for idx, player in enumerate(players)
            },
        },
    )

    started = time.monotonic()
    hands = 0
    actions = 0
    while hands < args.hands:
        game = service.get_game(game.id)
        if game.status != GameStatus.ACTIVE:
            if not service.engine.can_start_hand(game):
                LOGGER.info("Only one player has chips left; stopping")
                break
            service.start_hand(game.id)
            hands += 1
            continue
        clock["now"] += 1_000
        processed = service.process_due_simulator_jobs(limit=args.batch)
        actions += processed
        if not processed and not queue.jobs(game.id, status="pending"):
            # A dropped job leaves nothing queued for the current turn.
            service.scheduler.maybe_schedule(game)
        if time.monotonic() - started > args.timeout:
            LOGGER.warning("Timed out after %s hands", hands)
            break

    final = service.get_game(game.id)
    LOGGER.info("Played %s hands, %s bot actions, %s events published", hands, actions, len(transport.messages))
    for player in final.seated():
        LOGGER.info("Seat %s (%s): %s chips", player.seat, player.display_name, player.stack)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an all-bot game through the simulator queue")
    parser.add_argument("--db-url", default="sqlite://", help="SQLAlchemy URL (default: in-memory)")
    parser.add_argument("--players", type=int, default=4)
    parser.add_argument("--hands", type=int, default=20)
    parser.add_argument("--starting-stack", type=int, default=1_000)
    parser.add_argument("--sb", type=int, default=10)
    parser.add_argument("--bb", type=int, default=20)
    parser.add_argument("--batch", type=int, default=10)
    parser.add_argument("--timeout", type=float, default=60.0, help="max seconds to run before stopping")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    run_simulation(args)


if __name__ == "__main__":
    main()
