from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from engine.errors import ValidationError
from engine.models import ActionType, GameSnapshot, LegalActions, PlayerView, Round

from .config import StrategyConfig, StrategyId

_RANK_POINTS = {rank: idx for idx, rank in enumerate("23456789TJQKA", start=2)}


@dataclass(frozen=True)
class Decision:
    action: ActionType
    amount: Optional[int] = None


@dataclass
class StrategyContext:
    snapshot: GameSnapshot
    player_id: str
    rng: random.Random
    params: Dict[str, Any] = field(default_factory=dict)
    # How many actions this seat has already taken in the game.
    decisions_made: int = 0

    @property
    def me(self) -> Optional[PlayerView]:
        return self.snapshot.player(self.player_id)

    @property
    def legal(self) -> Optional[LegalActions]:
        return self.snapshot.legal

    @property
    def to_call(self) -> int:
        me = self.me
        if me is None:
            return 0
        return max(self.snapshot.current_highest_bet - me.current_bet, 0)


def _check_or_call(ctx: StrategyContext) -> Decision:
    if ctx.to_call == 0:
        return Decision(ActionType.CHECK)
    return Decision(ActionType.CALL)


def _check_or_fold(ctx: StrategyContext) -> Decision:
    if ctx.to_call == 0:
        return Decision(ActionType.CHECK)
    return Decision(ActionType.FOLD)


def _can_raise(legal: Optional[LegalActions]) -> bool:
    return legal is not None and (ActionType.RAISE in legal.actions or ActionType.BET in legal.actions)


def _aggressive_action(legal: LegalActions) -> ActionType:
    return ActionType.BET if ActionType.BET in legal.actions else ActionType.RAISE


def always_fold(ctx: StrategyContext) -> Optional[Decision]:
    return _check_or_fold(ctx)


def call_any(ctx: StrategyContext) -> Optional[Decision]:
    return _check_or_call(ctx)


def loose_passive(ctx: StrategyContext) -> Optional[Decision]:
    # Plays every hand and never puts in a raise.
    return _check_or_call(ctx)


def tight_aggro(ctx: StrategyContext) -> Optional[Decision]:
    snapshot, me, legal = ctx.snapshot, ctx.me, ctx.legal
    unopened = snapshot.current_highest_bet <= snapshot.big_blind
    if snapshot.current_round == Round.PRE_FLOP and unopened and _can_raise(legal):
        big_blind = max(snapshot.big_blind, 1)
        raise_to = max(big_blind * 3, snapshot.current_highest_bet + snapshot.min_raise_increment)
        amount = min(raise_to - me.current_bet, legal.max_amount)
        return Decision(_aggressive_action(legal), max(amount, legal.min_amount))
    return _check_or_call(ctx)


def _rough_hand_strength(hole: List[str]) -> int:
    """Very rough proxy for hand quality used to drive aggression choices."""
    if len(hole) < 2:
        return 0

    ranks = [card[0] for card in hole]
    suits = [card[1] for card in hole]
    values = [_RANK_POINTS.get(rank, 2) for rank in ranks]

    score = sum(values)
    if ranks[0] == ranks[1]:
        score += 14
    else:
        gap = abs(values[0] - values[1])
        if gap == 1:
            score += 4
        elif gap == 2:
            score += 2
    if suits[0] == suits[1]:
        score += 3
    if min(values) >= 11:
        score += 2
    return score


def _should_raise(strength: int, current_round: Round, facing_bet: bool, rng: random.Random) -> bool:
    base = 0.2 if facing_bet else 0.35
    round_bonus = {
        Round.PRE_FLOP: 0.0,
        Round.FLOP: 0.05,
        Round.TURN: 0.1,
        Round.RIVER: 0.12,
    }.get(current_round, 0.0)
    probability = min(0.85, base + round_bonus + min(strength / 45.0, 0.45))
    if strength >= 36:
        return True
    return rng.random() < probability


def _choose_amount(legal: LegalActions, facing_bet: bool, rng: random.Random) -> int:
    low, high = legal.min_amount, legal.max_amount
    if high is None or high <= low:
        return low
    roll = rng.random()
    if facing_bet:
        if roll < 0.2:
            return low
        if roll > 0.85:
            return high
    else:
        if roll < 0.35:
            return low
        if roll > 0.9:
            return high
    return low + int((high - low) * rng.random())


def aggressive(ctx: StrategyContext) -> Optional[Decision]:
    """Mixes in random raises with a bias toward stronger holdings."""
    me, legal = ctx.me, ctx.legal
    if legal is None or legal.actions == (ActionType.FOLD,):
        return Decision(ActionType.FOLD)
    hole = list(me.hole_cards)
    facing_bet = ctx.to_call > 0
    strength = _rough_hand_strength(hole)
    if _can_raise(legal) and hole and _should_raise(strength, ctx.snapshot.current_round, facing_bet, ctx.rng):
        return Decision(_aggressive_action(legal), _choose_amount(legal, facing_bet, ctx.rng))
    return _check_or_call(ctx)


def scripted(ctx: StrategyContext) -> Optional[Decision]:
    """Replay ``params["script"]`` in order; abstain once it runs out."""
    script = ctx.params.get("script") or []
    if not isinstance(script, list):
        raise ValidationError("Scripted strategy needs a list under params.script", code="BAD_CONFIG")
    if ctx.decisions_made >= len(script):
        return None
    step = script[ctx.decisions_made]
    if isinstance(step, str):
        step = {"action": step}
    try:
        return Decision(ActionType(step["action"]), step.get("amount"))
    except (KeyError, TypeError, ValueError, AttributeError):
        raise ValidationError(f"Bad script step: {step!r}", code="BAD_CONFIG") from None


def human(ctx: StrategyContext) -> Optional[Decision]:
    return None


STRATEGIES: Dict[StrategyId, Callable[[StrategyContext], Optional[Decision]]] = {
    StrategyId.HUMAN: human,
    StrategyId.ALWAYS_FOLD: always_fold,
    StrategyId.CALL_ANY: call_any,
    StrategyId.LOOSE_PASSIVE: loose_passive,
    StrategyId.TIGHT_AGGRO: tight_aggro,
    StrategyId.AGGRESSIVE: aggressive,
    StrategyId.SCRIPTED: scripted,
}


def decide(
    strategy: Optional[StrategyConfig],
    snapshot: GameSnapshot,
    player_id: str,
    rng: random.Random,
    decisions_made: int = 0,
) -> Optional[Decision]:
    """Pick an action for ``player_id`` or return None to leave the turn alone."""
    if strategy is None or snapshot.current_player_turn != player_id:
        return None
    if snapshot.player(player_id) is None:
        return None
    ctx = StrategyContext(
        snapshot=snapshot,
        player_id=player_id,
        rng=rng,
        params=dict(strategy.params),
        decisions_made=decisions_made,
    )
    return STRATEGIES[strategy.id](ctx)
