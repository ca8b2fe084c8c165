from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select, update

from engine.errors import ConcurrencyConflict
from engine.models import ActionRecord, ActionType, ActorSource, Game, GameStatus, Player, Round

from .db import ActionRow, Database, GameRow, PlayerRow, utcnow

LOGGER = logging.getLogger("storage")


@dataclass
class ActionDraft:
    """Action row to append in the same transaction as the game update."""

    player_id: Optional[str]
    hand_id: int
    action_type: ActionType
    amount: Optional[int] = None
    actor_source: ActorSource = ActorSource.HUMAN
    bot_strategy: Optional[str] = None


class GameRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(self, game: Game) -> Game:
        now = utcnow()
        with self.db.transaction() as session:
            row = GameRow(id=game.id, created_at=now, updated_at=now)
            self._copy_game(game, row)
            row.version = game.version
            session.add(row)
            for player in game.players:
                session.add(self._new_player_row(player))
        game.updated_at = now
        return game

    def load(self, game_id: str) -> Optional[Game]:
        with self.db.transaction() as session:
            row = session.get(GameRow, game_id)
            if row is None:
                return None
            return self._to_game(row)

    def list_ids(self) -> List[str]:
        with self.db.transaction() as session:
            return list(session.scalars(select(GameRow.id).order_by(GameRow.created_at)))

    def save(
        self,
        game: Game,
        expected_version: int,
        expected_hand_id: Optional[int] = None,
        action: Optional[ActionDraft] = None,
    ) -> Game:
        """Write back a mutated game if nobody else wrote it since it was loaded.

        The conditional update on ``version`` (and ``hand_id`` when given) is the
        per-game lock; losing it raises ConcurrencyConflict and writes nothing.
        """
        now = utcnow()
        with self.db.transaction() as session:
            conditions = [GameRow.id == game.id, GameRow.version == expected_version]
            if expected_hand_id is not None:
                conditions.append(GameRow.hand_id == expected_hand_id)
            values = self._game_values(game)
            values.update(version=expected_version + 1, updated_at=now)
            result = session.execute(update(GameRow).where(*conditions).values(**values))
            if result.rowcount != 1:
                LOGGER.info("Stale write to %s at version %s rejected", game.id, expected_version)
                raise ConcurrencyConflict(f"Game {game.id} changed since it was read")

            for player in game.players:
                existing = session.get(PlayerRow, player.id)
                if existing is None:
                    session.add(self._new_player_row(player))
                else:
                    self._copy_player(player, existing)

            last_action_id = game.last_action_id
            if action is not None:
                action_row = ActionRow(
                    game_id=game.id,
                    player_id=action.player_id,
                    hand_id=action.hand_id,
                    action_type=ActionType(action.action_type).value,
                    amount=action.amount,
                    actor_source=ActorSource(action.actor_source).value,
                    bot_strategy=action.bot_strategy,
                    created_at=now,
                )
                session.add(action_row)
                session.flush()
                last_action_id = action_row.id
                session.execute(
                    update(GameRow).where(GameRow.id == game.id).values(last_action_id=last_action_id)
                )

        game.version = expected_version + 1
        game.updated_at = now
        game.last_action_id = last_action_id
        return game

    def actions(self, game_id: str, hand_id: Optional[int] = None) -> List[ActionRecord]:
        with self.db.transaction() as session:
            query = select(ActionRow).where(ActionRow.game_id == game_id)
            if hand_id is not None:
                query = query.where(ActionRow.hand_id == hand_id)
            rows = session.scalars(query.order_by(ActionRow.id))
            return [
                ActionRecord(
                    id=row.id,
                    game_id=row.game_id,
                    player_id=row.player_id,
                    hand_id=row.hand_id,
                    action_type=ActionType(row.action_type),
                    amount=row.amount,
                    actor_source=ActorSource(row.actor_source),
                    bot_strategy=row.bot_strategy,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    def count_actions(self, game_id: str, hand_id: Optional[int] = None, player_id: Optional[str] = None) -> int:
        query = select(func.count(ActionRow.id)).where(ActionRow.game_id == game_id)
        if hand_id is not None:
            query = query.where(ActionRow.hand_id == hand_id)
        if player_id is not None:
            query = query.where(ActionRow.player_id == player_id)
        with self.db.transaction() as session:
            return session.scalar(query) or 0

    # Row mapping -----------------------------------------------------

    def _to_game(self, row: GameRow) -> Game:
        return Game(
            id=row.id,
            status=GameStatus(row.status),
            current_round=Round(row.current_round),
            current_highest_bet=row.current_highest_bet,
            current_player_turn=row.current_player_turn,
            pot=row.pot,
            community_cards=list(row.community_cards or []),
            hand_id=row.hand_id,
            small_blind=row.small_blind,
            big_blind=row.big_blind,
            min_raise_increment=row.min_raise_increment,
            last_aggressor_id=row.last_aggressor_id,
            deck=list(row.deck or []),
            turn_ms=row.turn_ms,
            simulator_config=dict(row.simulator_config) if row.simulator_config else None,
            players=[self._to_player(p) for p in row.players],
            version=row.version,
            last_action_id=row.last_action_id,
            updated_at=row.updated_at,
        )

    def _to_player(self, row: PlayerRow) -> Player:
        return Player(
            id=row.id,
            game_id=row.game_id,
            seat=row.seat,
            stack=row.stack,
            user_id=row.user_id,
            display_name=row.display_name,
            current_bet=row.current_bet,
            total_in_pot=row.total_in_pot,
            hole_cards=list(row.hole_cards or []),
            has_folded=row.has_folded,
            has_acted=row.has_acted,
            is_connected=row.is_connected,
            is_button=row.is_button,
            has_won=row.has_won,
            hand_name=row.hand_name,
        )

    def _game_values(self, game: Game) -> dict:
        return {
            "status": game.status.value,
            "current_round": game.current_round.value,
            "current_highest_bet": game.current_highest_bet,
            "current_player_turn": game.current_player_turn,
            "pot": game.pot,
            "community_cards": list(game.community_cards),
            "hand_id": game.hand_id,
            "small_blind": game.small_blind,
            "big_blind": game.big_blind,
            "min_raise_increment": game.min_raise_increment,
            "last_aggressor_id": game.last_aggressor_id,
            "deck": list(game.deck),
            "turn_ms": game.turn_ms,
            "simulator_config": game.simulator_config,
        }

    def _copy_game(self, game: Game, row: GameRow) -> None:
        for key, value in self._game_values(game).items():
            setattr(row, key, value)

    def _new_player_row(self, player: Player) -> PlayerRow:
        row = PlayerRow(id=player.id, game_id=player.game_id, seat=player.seat, stack=player.stack)
        self._copy_player(player, row)
        return row

    def _copy_player(self, player: Player, row: PlayerRow) -> None:
        row.user_id = player.user_id
        row.display_name = player.display_name
        row.stack = player.stack
        row.current_bet = player.current_bet
        row.total_in_pot = player.total_in_pot
        row.hole_cards = list(player.hole_cards)
        row.has_folded = player.has_folded
        row.has_acted = player.has_acted
        row.is_connected = player.is_connected
        row.is_button = player.is_button
        row.has_won = player.has_won
        row.hand_name = player.hand_name
