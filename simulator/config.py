from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from engine.errors import ValidationError


class StrategyId(str, Enum):
    HUMAN = "human"
    ALWAYS_FOLD = "always_fold"
    CALL_ANY = "call_any"
    LOOSE_PASSIVE = "loose_passive"
    TIGHT_AGGRO = "tight_aggro"
    AGGRESSIVE = "aggressive"
    SCRIPTED = "scripted"


class _CamelModel(BaseModel):
    # JSON stays camelCase on the wire; Python code uses snake_case names.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class StrategyConfig(_CamelModel):
    id: StrategyId
    params: Dict[str, Any] = Field(default_factory=dict)


class DelayConfig(_CamelModel):
    min_ms: int = Field(default=200, ge=0)
    max_ms: int = Field(default=800, ge=0)
    speed_multiplier: float = Field(default=1.0, gt=0)

    @model_validator(mode="after")
    def _check_window(self) -> "DelayConfig":
        if self.max_ms < self.min_ms:
            raise ValueError("maxMs must be >= minMs")
        return self


class SimulatorConfig(_CamelModel):
    enabled: bool = False
    paused: bool = False
    seed: Optional[Union[int, str]] = None
    default_strategy: Optional[StrategyConfig] = None
    per_seat_strategy: Dict[str, StrategyConfig] = Field(default_factory=dict)
    delays: DelayConfig = Field(default_factory=DelayConfig)
    # Card labels dealt first in every hand: hole cards from the button's left, then the board.
    deck_script: Optional[List[str]] = None

    def strategy_for(self, player_id: str) -> Optional[StrategyConfig]:
        return self.per_seat_strategy.get(player_id) or self.default_strategy

    def is_bot(self, player_id: str) -> bool:
        strategy = self.strategy_for(player_id)
        return strategy is not None and strategy.id != StrategyId.HUMAN

    @property
    def active(self) -> bool:
        return self.enabled and not self.paused

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_simulator_config(raw: Optional[Dict[str, Any]]) -> SimulatorConfig:
    """Validate stored or submitted config; bad input becomes the engine's ValidationError."""
    if raw is None:
        return SimulatorConfig()
    if isinstance(raw, SimulatorConfig):
        return raw
    try:
        return SimulatorConfig.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid simulator config: {exc.errors()[0]['msg']}", code="BAD_CONFIG") from exc


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class QueueConfig:
    lease_ms: int = 30_000
    max_attempts: int = 5
    max_retry_delay_ms: int = 30_000


@dataclass
class WorkerConfig:
    enabled: bool = True
    batch_size: int = 10
    poll_interval_ms: int = 250

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        return cls(enabled=_env_flag("SIM_BOT_ENABLED", True))
