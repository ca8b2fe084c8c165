"""Texas Hold'em rules shared by the table service, simulator and host."""

from .cards import RANKS, SUITS, Card, deal, full_deck, parse_cards, shuffled_deck
from .errors import ConcurrencyConflict, InvariantViolation, PokerError, TransientInfraError, ValidationError
from .evaluator import HandCategory, HandRank, compare_hands, describe_rank, evaluate_best
from .game import TableEngine
from .models import (
    ActionOutcome,
    ActionRecord,
    ActionType,
    ActorSource,
    Game,
    GameSnapshot,
    GameStatus,
    LegalActions,
    Player,
    PlayerView,
    Round,
    TableConfig,
)
from .timeouts import TurnKey, TurnTimeoutCoordinator, TurnWatcher

__all__ = [
    "RANKS",
    "SUITS",
    "Card",
    "deal",
    "full_deck",
    "parse_cards",
    "shuffled_deck",
    "ConcurrencyConflict",
    "InvariantViolation",
    "PokerError",
    "TransientInfraError",
    "ValidationError",
    "HandCategory",
    "HandRank",
    "compare_hands",
    "describe_rank",
    "evaluate_best",
    "TableEngine",
    "ActionOutcome",
    "ActionRecord",
    "ActionType",
    "ActorSource",
    "Game",
    "GameSnapshot",
    "GameStatus",
    "LegalActions",
    "Player",
    "PlayerView",
    "Round",
    "TableConfig",
    "TurnKey",
    "TurnTimeoutCoordinator",
    "TurnWatcher",
]
