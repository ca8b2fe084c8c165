from __future__ import annotations

import os
from dataclasses import dataclass, field

from engine.models import TableConfig
from simulator.config import QueueConfig, WorkerConfig


@dataclass
class HostConfig:
    host: str = field(default_factory=lambda: os.environ.get("POKER_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.environ.get("POKER_PORT", "8765")))
    db_url: str = field(default_factory=lambda: os.environ.get("POKER_DB_URL", "sqlite:///poker.db"))
    table: TableConfig = field(default_factory=TableConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig.from_env)
    queue: QueueConfig = field(default_factory=QueueConfig)
    auto_start_players: int = 2
    # Pause between a finished hand and the next deal; 0 leaves dealing to clients.
    next_hand_delay_ms: int = 3_000
