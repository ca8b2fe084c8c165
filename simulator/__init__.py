"""Bot simulator: per-game config, strategies and the durable job pipeline that drives bot turns."""

from .config import (
    DelayConfig,
    QueueConfig,
    SimulatorConfig,
    StrategyConfig,
    StrategyId,
    WorkerConfig,
    parse_simulator_config,
)
from .queue import JobStatus, SimulatorJob, SimulatorJobQueue
from .scheduler import BotScheduler
from .strategies import Decision, decide
from .worker import SimulatorWorker

__all__ = [
    "DelayConfig",
    "QueueConfig",
    "SimulatorConfig",
    "StrategyConfig",
    "StrategyId",
    "WorkerConfig",
    "parse_simulator_config",
    "JobStatus",
    "SimulatorJob",
    "SimulatorJobQueue",
    "BotScheduler",
    "Decision",
    "decide",
    "SimulatorWorker",
]
