from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class GameStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"


class Round(str, Enum):
    PRE_FLOP = "pre-flop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"


ROUND_PROGRESSION: Dict[Round, Optional[Round]] = {
    Round.PRE_FLOP: Round.FLOP,
    Round.FLOP: Round.TURN,
    Round.TURN: Round.RIVER,
    Round.RIVER: Round.SHOWDOWN,
    Round.SHOWDOWN: None,
}

# Community cards revealed when entering each round.
ROUND_DEAL_COUNT: Dict[Round, int] = {Round.FLOP: 3, Round.TURN: 1, Round.RIVER: 1}


class ActionType(str, Enum):
    BET = "bet"
    CHECK = "check"
    CALL = "call"
    RAISE = "raise"
    FOLD = "fold"
    TIMEOUT = "timeout"


class ActorSource(str, Enum):
    HUMAN = "human"
    BOT = "bot"
    SYSTEM = "system"


@dataclass
class TableConfig:
    seats: int = 6
    starting_stack: int = 1_000
    small_blind: int = 10
    big_blind: int = 20
    turn_ms: int = 30_000


@dataclass
class Player:
    id: str
    game_id: str
    seat: int
    stack: int
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    current_bet: int = 0
    total_in_pot: int = 0
    hole_cards: List[str] = field(default_factory=list)
    has_folded: bool = False
    has_acted: bool = False
    is_connected: bool = True
    is_button: bool = False
    has_won: bool = False
    hand_name: Optional[str] = None

    @property
    def can_act(self) -> bool:
        return not self.has_folded and self.stack > 0

    @property
    def is_all_in(self) -> bool:
        return not self.has_folded and self.stack == 0 and self.total_in_pot > 0

    def reset_for_hand(self) -> None:
        self.current_bet = 0
        self.total_in_pot = 0
        self.has_folded = False
        self.has_acted = False
        self.has_won = False
        self.hand_name = None
        self.hole_cards.clear()

    def reset_for_round(self) -> None:
        self.current_bet = 0
        self.has_acted = False


@dataclass
class Game:
    id: str
    status: GameStatus = GameStatus.WAITING
    current_round: Round = Round.PRE_FLOP
    current_highest_bet: int = 0
    current_player_turn: Optional[str] = None
    pot: int = 0
    community_cards: List[str] = field(default_factory=list)
    hand_id: int = 0
    small_blind: int = 10
    big_blind: int = 20
    min_raise_increment: int = 0
    last_aggressor_id: Optional[str] = None
    deck: List[str] = field(default_factory=list)
    turn_ms: int = 30_000
    simulator_config: Optional[Dict[str, Any]] = None
    players: List[Player] = field(default_factory=list)
    version: int = 0
    last_action_id: Optional[int] = None
    updated_at: Optional[datetime] = None

    def player(self, player_id: Optional[str]) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def seated(self) -> List[Player]:
        return sorted(self.players, key=lambda p: p.seat)

    def live_players(self) -> List[Player]:
        return [p for p in self.seated() if not p.has_folded]

    def chips_in_play(self) -> int:
        return sum(p.stack for p in self.players) + self.pot


@dataclass
class ActionRecord:
    """One row of the append-only action log."""

    id: int
    game_id: str
    player_id: Optional[str]
    hand_id: int
    action_type: ActionType
    amount: Optional[int]
    actor_source: ActorSource
    bot_strategy: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class LegalActions:
    actions: Tuple[ActionType, ...]
    to_call: int
    min_amount: Optional[int]
    max_amount: Optional[int]


@dataclass
class ActionOutcome:
    """What the engine did with one action: the resolved type, chips moved and emitted events."""

    requested: ActionType
    resolved: ActionType
    amount: int
    events: List[Dict[str, object]] = field(default_factory=list)
    round_changed: bool = False
    hand_complete: bool = False
    showdown: bool = False


@dataclass(frozen=True)
class PlayerView:
    id: str
    seat: int
    stack: int
    current_bet: int
    total_in_pot: int
    has_folded: bool
    is_button: bool
    is_connected: bool
    has_won: bool
    hole_cards: Tuple[str, ...]
    display_name: Optional[str] = None
    hand_name: Optional[str] = None
    is_all_in: bool = False


@dataclass(frozen=True)
class GameSnapshot:
    """Read-only projection of a game handed to strategies and clients."""

    id: str
    status: GameStatus
    current_round: Round
    current_highest_bet: int
    current_player_turn: Optional[str]
    pot: int
    community_cards: Tuple[str, ...]
    hand_id: int
    small_blind: int
    big_blind: int
    min_raise_increment: int
    last_action: Optional[ActionType]
    action_count: int
    turn_ms: int
    players: Tuple[PlayerView, ...]
    legal: Optional[LegalActions] = None
    updated_at: Optional[datetime] = None
    last_aggressor_id: Optional[str] = None

    def player(self, player_id: str) -> Optional[PlayerView]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def to_payload(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "status": self.status.value,
            "current_round": self.current_round.value,
            "current_highest_bet": self.current_highest_bet,
            "current_player_turn": self.current_player_turn,
            "pot": self.pot,
            "community_cards": list(self.community_cards),
            "hand_id": self.hand_id,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "turn_ms": self.turn_ms,
            "last_aggressor_id": self.last_aggressor_id,
            "players": [
                {
                    "id": p.id,
                    "seat": p.seat,
                    "stack": p.stack,
                    "current_bet": p.current_bet,
                    "has_folded": p.has_folded,
                    "is_button": p.is_button,
                    "is_connected": p.is_connected,
                    "has_won": p.has_won,
                    "hole_cards": list(p.hole_cards),
                    "display_name": p.display_name,
                    "hand_name": p.hand_name,
                    "is_all_in": p.is_all_in,
                }
                for p in self.players
            ],
            "legal": (
                {
                    "actions": [action.value for action in self.legal.actions],
                    "to_call": self.legal.to_call,
                    "min_amount": self.legal.min_amount,
                    "max_amount": self.legal.max_amount,
                }
                if self.legal
                else None
            ),
        }
