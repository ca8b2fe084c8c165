import argparse
import asyncio
import logging

from engine.models import TableConfig
from simulator.config import QueueConfig, WorkerConfig

from .config import HostConfig
from .server import HostServer


def main() -> None:
    defaults = HostConfig()
    parser = argparse.ArgumentParser(description="Poker table host with bot simulator")
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    parser.add_argument("--db-url", default=defaults.db_url, help="SQLAlchemy database URL")
    parser.add_argument("--seats", type=int, default=6)
    parser.add_argument("--starting-stack", type=int, default=1_000)
    parser.add_argument("--sb", type=int, default=10)
    parser.add_argument("--bb", type=int, default=20)
    parser.add_argument("--turn-time", type=int, default=30_000, help="Turn clock in milliseconds")
    parser.add_argument("--auto-start", type=int, default=2, help="Players needed to deal the first hand (0 = manual)")
    parser.add_argument("--next-hand-delay", type=int, default=3_000, help="Milliseconds before dealing the next hand")
    parser.add_argument("--no-bots", action="store_true", help="Do not drain simulator jobs")
    parser.add_argument("--poll-interval", type=int, default=250, help="Simulator job poll interval in milliseconds")
    parser.add_argument("--batch-size", type=int, default=10)
    parser.add_argument("--lease", type=int, default=30_000, help="Job lease in milliseconds")
    parser.add_argument("--max-attempts", type=int, default=5)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    worker = WorkerConfig.from_env()
    if args.no_bots:
        worker.enabled = False
    worker.poll_interval_ms = args.poll_interval
    worker.batch_size = args.batch_size

    config = HostConfig(
        host=args.host,
        port=args.port,
        db_url=args.db_url,
        table=TableConfig(
            seats=args.seats,
            starting_stack=args.starting_stack,
            small_blind=args.sb,
            big_blind=args.bb,
            turn_ms=args.turn_time,
        ),
        worker=worker,
        queue=QueueConfig(lease_ms=args.lease, max_attempts=args.max_attempts),
        auto_start_players=args.auto_start,
        next_hand_delay_ms=args.next_hand_delay,
    )

    server = HostServer(config)
    asyncio.run(server.start())


if __name__ == "__main__":
    main()
