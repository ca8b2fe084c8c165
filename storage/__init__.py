"""SQLAlchemy persistence for games, players, the action log and simulator jobs."""

from .db import ActionRow, Base, Database, GameRow, PlayerRow, SimulatorJobRow, utcnow
from .repository import ActionDraft, GameRepository

__all__ = [
    "ActionRow",
    "Base",
    "Database",
    "GameRow",
    "PlayerRow",
    "SimulatorJobRow",
    "utcnow",
    "ActionDraft",
    "GameRepository",
]
