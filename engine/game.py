from __future__ import annotations

import time
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .cards import deal, parse_cards, shuffled_deck
from .errors import InvariantViolation, ValidationError
from .evaluator import HandRank, describe_rank, evaluate_best
from .models import (
    ROUND_DEAL_COUNT,
    ROUND_PROGRESSION,
    ActionOutcome,
    ActionType,
    Game,
    GameSnapshot,
    GameStatus,
    LegalActions,
    Player,
    PlayerView,
    Round,
    TableConfig,
)

# TableEngine holds no table state: every call receives the Game record, mutates
# it in place and returns the events it produced. No storage or networking here.
# Callers work on a freshly loaded copy and throw it away if anything raises, so
# validation always finishes before the first mutation.

Events = List[Dict[str, object]]


class TableEngine:
    """No-Limit Texas Hold'em rules for a single table."""

    def __init__(self, config: Optional[TableConfig] = None) -> None:
        self.config = config or TableConfig()

    # Seat management -------------------------------------------------

    def add_player(
        self,
        game: Game,
        player_id: str,
        stack: int,
        user_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Player:
        if stack <= 0:
            raise ValidationError("Buy-in must be positive", code="BAD_STACK")
        if user_id is not None:
            for existing in game.players:
                if existing.user_id == user_id:
                    return existing
        if len(game.players) >= self.config.seats:
            raise ValidationError("Table is full", code="TABLE_FULL")

        seat = max((p.seat for p in game.players), default=-1) + 1
        player = Player(
            id=player_id,
            game_id=game.id,
            seat=seat,
            stack=stack,
            user_id=user_id,
            display_name=display_name,
        )
        if game.status == GameStatus.ACTIVE:
            # Sits out until the next deal.
            player.has_folded = True
        game.players.append(player)
        return player

    # Hand lifecycle --------------------------------------------------

    def can_start_hand(self, game: Game) -> bool:
        return len([p for p in game.players if p.stack > 0]) >= 2

    def start_hand(
        self,
        game: Game,
        seed: Optional[Union[int, str]] = None,
        preset: Sequence[str] = (),
    ) -> Events:
        if game.status == GameStatus.ACTIVE:
            raise ValidationError("Hand already in progress", code="HAND_IN_PROGRESS")
        if not self.can_start_hand(game):
            raise ValidationError("Need at least 2 players with chips to start a hand", code="NOT_ENOUGH_PLAYERS")

        # Preset cards come off the top in order: hole cards round by round, then the board.
        preset = list(preset)
        try:
            parse_cards(preset)
        except ValueError as exc:
            raise ValidationError(str(exc), code="BAD_DECK") from exc
        if len(set(preset)) != len(preset):
            raise ValidationError("Preset deck repeats a card", code="BAD_DECK")

        seated = game.seated()
        for player in seated:
            player.reset_for_hand()
            if player.stack == 0:
                player.has_folded = True

        button = self._move_button(game)

        if seed is None:
            seed = int(time.time() * 1000) & 0xFFFFFFFF
        game.hand_id += 1
        game.status = GameStatus.ACTIVE
        game.current_round = Round.PRE_FLOP
        game.community_cards = []
        game.pot = 0
        game.current_highest_bet = 0
        game.min_raise_increment = self._min_bet(game)
        game.last_aggressor_id = None
        game.current_player_turn = None
        game.deck = preset + shuffled_deck(f"{game.id}:{game.hand_id}:{seed}", exclude=preset)

        events: Events = [{"ev": "START_HAND", "hand_id": game.hand_id, "button": button.id, "seed": seed}]
        self._deal_hole_cards(game, button)
        bb_player = self._post_blinds(game, button, events)

        if self._round_complete(game):
            self._advance_round(game, events)
        else:
            live = [p for p in seated if not p.has_folded]
            if len(live) == 2 and button.can_act:
                first = button
            else:
                first = self._next_actor_after(game, bb_player)
            game.current_player_turn = first.id
        self.check_invariants(game)
        return events

    def _move_button(self, game: Game) -> Player:
        seated = game.seated()
        previous = next((p for p in seated if p.is_button), None)
        for player in seated:
            player.is_button = False
        if previous is None:
            button = next(p for p in seated if p.stack > 0)
        else:
            button = self._next_matching(game, previous, lambda p: p.stack > 0)
        button.is_button = True
        return button

    def _deal_hole_cards(self, game: Game, button: Player) -> None:
        ordered = self._rotation_after(game, button, lambda p: not p.has_folded)
        for _ in range(2):
            for player in ordered:
                player.hole_cards.extend(deal(game.deck, 1))

    def _post_blinds(self, game: Game, button: Player, events: Events) -> Player:
        live = [p for p in game.seated() if not p.has_folded]
        if len(live) == 2:
            sb_player = button
        else:
            sb_player = self._next_matching(game, button, lambda p: not p.has_folded)
        bb_player = self._next_matching(game, sb_player, lambda p: not p.has_folded)

        sb_amount = self._commit_chips(game, sb_player, game.small_blind)
        bb_amount = self._commit_chips(game, bb_player, game.big_blind)
        game.current_highest_bet = max(sb_player.current_bet, bb_player.current_bet)
        if game.big_blind > 0:
            game.last_aggressor_id = bb_player.id
            events.append(
                {
                    "ev": "POST_BLINDS",
                    "sb_player": sb_player.id,
                    "bb_player": bb_player.id,
                    "sb": sb_amount,
                    "bb": bb_amount,
                }
            )
        return bb_player

    def _commit_chips(self, game: Game, player: Player, amount: int) -> int:
        amount = min(amount, player.stack)
        player.stack -= amount
        player.current_bet += amount
        player.total_in_pot += amount
        game.pot += amount
        return amount

    def _min_bet(self, game: Game) -> int:
        return max(game.big_blind, 1)

    # Seat rotation ---------------------------------------------------

    def _rotation_after(self, game: Game, start: Player, predicate) -> List[Player]:
        """Players matching predicate clockwise, starting with the seat after start."""
        seated = game.seated()
        idx = seated.index(start)
        ordered = []
        for offset in range(1, len(seated) + 1):
            candidate = seated[(idx + offset) % len(seated)]
            if predicate(candidate):
                ordered.append(candidate)
        return ordered

    def _next_matching(self, game: Game, start: Player, predicate) -> Player:
        ordered = self._rotation_after(game, start, predicate)
        if not ordered:
            raise InvariantViolation("No eligible seat found")
        return ordered[0]

    def _next_actor_after(self, game: Game, player: Player) -> Player:
        return self._next_matching(game, player, lambda p: p.can_act)

    def _button(self, game: Game) -> Player:
        for player in game.seated():
            if player.is_button:
                return player
        raise InvariantViolation("No button player found")

    # Action handling -------------------------------------------------

    def legal_actions(self, game: Game, player_id: str) -> LegalActions:
        player = game.player(player_id)
        if player is None or player.has_folded:
            raise ValidationError("Seat not active", code="SEAT_NOT_ACTIVE")

        to_call = max(game.current_highest_bet - player.current_bet, 0)
        legal: List[ActionType] = [ActionType.FOLD]
        min_amount: Optional[int] = None
        max_amount: Optional[int] = None
        if to_call == 0:
            legal.append(ActionType.CHECK)
        elif player.stack > 0:
            legal.append(ActionType.CALL)

        if player.stack > to_call:
            max_amount = player.stack
            if game.current_highest_bet == 0:
                legal.append(ActionType.BET)
                min_amount = min(self._min_bet(game), player.stack)
            else:
                legal.append(ActionType.RAISE)
                min_to = game.current_highest_bet + game.min_raise_increment
                min_amount = min(min_to - player.current_bet, player.stack)

        return LegalActions(
            actions=tuple(legal),
            to_call=min(to_call, player.stack),
            min_amount=min_amount,
            max_amount=max_amount,
        )

    def apply_action(
        self,
        game: Game,
        player_id: str,
        action: ActionType,
        amount: Optional[int] = None,
    ) -> ActionOutcome:
        chips_before = game.chips_in_play()
        player, requested, resolved, chips = self._validate(game, player_id, action, amount)

        outcome = ActionOutcome(requested=requested, resolved=resolved, amount=chips)
        events = outcome.events
        round_before = game.current_round

        if requested == ActionType.TIMEOUT:
            events.append({"ev": "TIMEOUT", "player": player.id, "resolved": resolved.value})

        # Each branch records what happened so the service can publish it.
        if resolved == ActionType.FOLD:
            player.has_folded = True
            events.append({"ev": "FOLD", "player": player.id})
        elif resolved == ActionType.CHECK:
            events.append({"ev": "CHECK", "player": player.id})
        elif resolved == ActionType.CALL:
            self._commit_chips(game, player, chips)
            events.append({"ev": "CALL", "player": player.id, "amount": chips})
        else:
            previous_bet = game.current_highest_bet
            self._commit_chips(game, player, chips)
            if player.current_bet > previous_bet:
                increment = player.current_bet - previous_bet
                game.current_highest_bet = player.current_bet
                if increment >= game.min_raise_increment:
                    game.min_raise_increment = increment
                    game.last_aggressor_id = player.id
                # Everyone else owes a response to the new price.
                for other in game.players:
                    if other is not player:
                        other.has_acted = False
            events.append(
                {
                    "ev": resolved.value.upper(),
                    "player": player.id,
                    "amount": chips,
                    "to": player.current_bet,
                }
            )
        player.has_acted = True

        self._after_action(game, player, events)

        outcome.round_changed = game.current_round != round_before
        outcome.hand_complete = game.status == GameStatus.COMPLETED
        outcome.showdown = any(ev["ev"] == "SHOWDOWN" for ev in events)
        self.check_invariants(game, chips_before)
        return outcome

    def _validate(
        self,
        game: Game,
        player_id: str,
        action: ActionType,
        amount: Optional[int],
    ) -> Tuple[Player, ActionType, ActionType, int]:
        if game.status != GameStatus.ACTIVE or game.current_round == Round.SHOWDOWN:
            raise ValidationError("Game is not active", code="HAND_NOT_ACTIVE")
        player = game.player(player_id)
        if player is None:
            raise ValidationError("Player not found", code="UNKNOWN_PLAYER")
        if player.has_folded:
            raise ValidationError("Player has already folded", code="ALREADY_FOLDED")
        if game.current_player_turn != player.id:
            raise ValidationError("Not player's turn", code="OUT_OF_TURN")
        try:
            requested = ActionType(action)
        except ValueError:
            raise ValidationError(f"Unsupported action {action}") from None
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise ValidationError("Amount must be an integer", code="BAD_SCHEMA")

        to_call = max(game.current_highest_bet - player.current_bet, 0)
        resolved = requested
        if requested == ActionType.TIMEOUT:
            resolved = ActionType.CHECK if to_call == 0 else ActionType.FOLD

        if resolved in (ActionType.FOLD, ActionType.CHECK):
            if resolved == ActionType.CHECK and to_call > 0:
                raise ValidationError("Cannot check, there is a bet to call")
            return player, requested, resolved, 0

        if resolved == ActionType.CALL:
            if to_call == 0:
                raise ValidationError("No bet to call")
            chips = min(to_call, player.stack)
            if amount is not None and amount != chips:
                raise ValidationError(f"Call must be exactly {chips}")
            return player, requested, resolved, chips

        # Bet / raise
        if amount is None or amount <= 0:
            raise ValidationError(f"{resolved.value.capitalize()} requires a positive amount", code="BAD_SCHEMA")
        if amount > player.stack:
            raise ValidationError("Amount exceeds stack")
        all_in = amount == player.stack
        if resolved == ActionType.BET:
            if game.current_highest_bet > 0:
                raise ValidationError("Cannot bet; there is already a bet. Use raise.")
            if amount < self._min_bet(game) and not all_in:
                raise ValidationError(f"Minimum bet is {self._min_bet(game)}")
            return player, requested, resolved, amount

        if game.current_highest_bet == 0:
            raise ValidationError("No bet to raise; use bet")
        target = player.current_bet + amount
        if target <= game.current_highest_bet:
            raise ValidationError("Raise must exceed current bet")
        min_to = game.current_highest_bet + game.min_raise_increment
        if target < min_to and not all_in:
            raise ValidationError(f"Minimum raise is to {min_to}")
        return player, requested, resolved, amount

    def _after_action(self, game: Game, actor: Player, events: Events) -> None:
        live = game.live_players()
        if len(live) == 1:
            self._award_uncontested(game, live[0], events)
            return
        if self._round_complete(game):
            self._advance_round(game, events)
            return
        game.current_player_turn = self._next_actor_after(game, actor).id

    def _round_complete(self, game: Game) -> bool:
        bettors = [p for p in game.live_players() if p.stack > 0]
        if not bettors:
            return True
        if len(bettors) == 1 and bettors[0].current_bet >= game.current_highest_bet:
            # Everyone else is all-in: nobody left to bet against.
            return True
        return all(p.has_acted and p.current_bet == game.current_highest_bet for p in bettors)

    def _advance_round(self, game: Game, events: Events) -> None:
        while True:
            for player in game.players:
                player.reset_for_round()
            game.current_highest_bet = 0
            game.min_raise_increment = self._min_bet(game)
            game.last_aggressor_id = None
            game.current_player_turn = None

            next_round = ROUND_PROGRESSION[game.current_round]
            if next_round is None or next_round == Round.SHOWDOWN:
                game.current_round = Round.SHOWDOWN
                self._resolve_showdown(game, events)
                return

            game.current_round = next_round
            cards = deal(game.deck, ROUND_DEAL_COUNT[next_round])
            game.community_cards.extend(cards)
            events.append({"ev": next_round.name, "cards": cards})

            bettors = [p for p in game.live_players() if p.stack > 0]
            if len(bettors) >= 2:
                game.current_player_turn = self._next_actor_after(game, self._button(game)).id
                return
            # Fewer than two players can still bet: run the board out.

    # Pot resolution --------------------------------------------------

    def _award_uncontested(self, game: Game, winner: Player, events: Events) -> None:
        if game.pot > 0:
            winner.stack += game.pot
            events.append({"ev": "POT_AWARD", "player": winner.id, "amount": game.pot})
            game.pot = 0
        winner.has_won = True
        self._finish_hand(game, events)

    def _resolve_showdown(self, game: Game, events: Events) -> None:
        scores: Dict[str, HandRank] = {}
        for player in game.live_players():
            score = evaluate_best(parse_cards(player.hole_cards + game.community_cards))
            scores[player.id] = score
            player.hand_name = describe_rank(score)
            events.append(
                {
                    "ev": "SHOWDOWN",
                    "player": player.id,
                    "hand": list(player.hole_cards),
                    "board": list(game.community_cards),
                    "rank": player.hand_name,
                }
            )

        for pot_value, contenders in self.build_side_pots(game):
            best = max(scores[pid] for pid in contenders)
            winners = self._clockwise_from_button(game, [pid for pid in contenders if scores[pid] == best])
            share, remainder = divmod(pot_value, len(winners))
            for idx, winner in enumerate(winners):
                payout = share + (1 if idx < remainder else 0)
                winner.stack += payout
                winner.has_won = True
                events.append({"ev": "POT_AWARD", "player": winner.id, "amount": payout})
            game.pot -= pot_value

        if game.pot != 0:
            raise InvariantViolation(f"Pot not fully distributed: {game.pot} left")
        self._finish_hand(game, events)

    def build_side_pots(self, game: Game) -> List[Tuple[int, List[str]]]:
        """Layer contributions into (amount, contender ids) pots, main pot first."""
        remaining: Dict[str, int] = {p.id: p.total_in_pot for p in game.players if p.total_in_pot > 0}
        pots: List[Tuple[int, List[str]]] = []
        while True:
            contributors = [pid for pid, amount in remaining.items() if amount > 0]
            if not contributors:
                break
            layer = min(remaining[pid] for pid in contributors)
            for pid in contributors:
                remaining[pid] -= layer
            total = layer * len(contributors)
            contenders = [pid for pid in contributors if not game.player(pid).has_folded]
            if not contenders:
                # Only folded money at this level: it rides with the pot below.
                if not pots:
                    raise InvariantViolation("Pot layer without any live contender")
                amount, previous = pots[-1]
                pots[-1] = (amount + total, previous)
                continue
            pots.append((total, contenders))
        return pots

    def _clockwise_from_button(self, game: Game, player_ids: List[str]) -> List[Player]:
        # Odd chips go to the first tied winner left of the button, then onwards.
        wanted = set(player_ids)
        return self._rotation_after(game, self._button(game), lambda p: p.id in wanted)

    def _finish_hand(self, game: Game, events: Events) -> None:
        game.status = GameStatus.COMPLETED
        game.current_round = Round.SHOWDOWN
        game.current_player_turn = None
        game.current_highest_bet = 0
        for player in game.players:
            player.current_bet = 0
            player.total_in_pot = 0
            player.has_acted = False
        events.append(
            {
                "ev": "END_HAND",
                "hand_id": game.hand_id,
                "stacks": {p.id: p.stack for p in game.seated()},
            }
        )
        for player in game.seated():
            if player.stack == 0:
                events.append({"ev": "ELIMINATED", "player": player.id})

    # Invariants and projections --------------------------------------

    def check_invariants(self, game: Game, chips_before: Optional[int] = None) -> None:
        if game.pot < 0 or any(p.stack < 0 for p in game.players):
            raise InvariantViolation("Negative pot or stack")
        if chips_before is not None and game.chips_in_play() != chips_before:
            raise InvariantViolation(
                f"Chip total changed from {chips_before} to {game.chips_in_play()}"
            )
        if game.status == GameStatus.ACTIVE and game.current_round != Round.SHOWDOWN:
            actor = game.player(game.current_player_turn)
            if actor is None or actor.has_folded:
                raise InvariantViolation("Active hand without a live player to act")

    def is_match_over(self, game: Game) -> bool:
        return not self.can_start_hand(game)

    def snapshot(
        self,
        game: Game,
        viewer_id: Optional[str] = None,
        reveal_all: bool = False,
        last_action: Optional[ActionType] = None,
        action_count: int = 0,
    ) -> GameSnapshot:
        at_showdown = game.status == GameStatus.COMPLETED and game.current_round == Round.SHOWDOWN
        views = []
        for player in game.seated():
            shows = reveal_all or player.id == viewer_id or (
                at_showdown and player.hand_name is not None and not player.has_folded
            )
            views.append(
                PlayerView(
                    id=player.id,
                    seat=player.seat,
                    stack=player.stack,
                    current_bet=player.current_bet,
                    total_in_pot=player.total_in_pot,
                    has_folded=player.has_folded,
                    is_button=player.is_button,
                    is_connected=player.is_connected,
                    has_won=player.has_won,
                    hole_cards=tuple(player.hole_cards) if shows else (),
                    display_name=player.display_name,
                    hand_name=player.hand_name,
                    is_all_in=player.is_all_in,
                )
            )
        legal = None
        if (
            game.status == GameStatus.ACTIVE
            and game.current_player_turn is not None
            and (reveal_all or viewer_id == game.current_player_turn)
        ):
            legal = self.legal_actions(game, game.current_player_turn)
        return GameSnapshot(
            id=game.id,
            status=game.status,
            current_round=game.current_round,
            current_highest_bet=game.current_highest_bet,
            current_player_turn=game.current_player_turn,
            pot=game.pot,
            community_cards=tuple(game.community_cards),
            hand_id=game.hand_id,
            small_blind=game.small_blind,
            big_blind=game.big_blind,
            min_raise_increment=game.min_raise_increment,
            last_action=last_action,
            action_count=action_count,
            turn_ms=game.turn_ms,
            players=tuple(views),
            legal=legal,
            updated_at=game.updated_at,
            last_aggressor_id=game.last_aggressor_id,
        )
