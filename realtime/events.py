from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from engine.models import Game


class GameEventType(str, Enum):
    STATE_UPDATED = "state-updated"
    HAND_STARTED = "hand-started"
    BET_PLACED = "bet-placed"
    CALL_MADE = "call-made"
    CHECK_MADE = "check-made"
    RAISE_MADE = "raise-made"
    PLAYER_FOLDED = "player-folded"
    SHOWDOWN = "showdown"
    GAME_ENDED = "game-ended"


# Engine event tags ("ev") that clients hear about directly.
_ENGINE_EVENT_TYPES = {
    "START_HAND": GameEventType.HAND_STARTED,
    "BET": GameEventType.BET_PLACED,
    "CALL": GameEventType.CALL_MADE,
    "CHECK": GameEventType.CHECK_MADE,
    "RAISE": GameEventType.RAISE_MADE,
    "FOLD": GameEventType.PLAYER_FOLDED,
    "SHOWDOWN": GameEventType.SHOWDOWN,
}

# snake_case payload keys renamed for the wire; everything else passes through.
_WIRE_KEYS = {
    "hand_id": "handId",
    "sb_player": "sbPlayer",
    "bb_player": "bbPlayer",
    "player_id": "playerId",
    "current_player_turn": "currentPlayerTurn",
}


@dataclass(frozen=True)
class GameEvent:
    type: GameEventType
    game_id: str
    last_action_id: Optional[int]
    updated_at: Optional[datetime]
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        """The one place field names become camelCase."""
        return {
            "type": self.type.value,
            "gameId": self.game_id,
            "lastActionId": self.last_action_id,
            "updatedAt": self.updated_at.isoformat() + "Z" if self.updated_at else None,
            "payload": {_WIRE_KEYS.get(key, key): value for key, value in self.payload.items()},
        }


def events_for(game: Game, engine_events: Iterable[Dict[str, object]], match_over: bool = False) -> List[GameEvent]:
    """Translate engine events into published events, ending with a state update."""

    def make(event_type: GameEventType, payload: Dict[str, Any]) -> GameEvent:
        return GameEvent(
            type=event_type,
            game_id=game.id,
            last_action_id=game.last_action_id,
            updated_at=game.updated_at,
            payload=payload,
        )

    published: List[GameEvent] = []
    for ev in engine_events:
        event_type = _ENGINE_EVENT_TYPES.get(str(ev.get("ev")))
        if event_type is None:
            continue
        payload = {key: value for key, value in ev.items() if key != "ev"}
        if "player" in payload:
            payload["player_id"] = payload.pop("player")
        published.append(make(event_type, payload))

    if match_over:
        published.append(make(GameEventType.GAME_ENDED, {"hand_id": game.hand_id}))
    published.append(
        make(
            GameEventType.STATE_UPDATED,
            {
                "status": game.status.value,
                "round": game.current_round.value,
                "pot": game.pot,
                "current_player_turn": game.current_player_turn,
                "hand_id": game.hand_id,
            },
        )
    )
    return published
