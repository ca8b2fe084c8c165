import pytest

from engine.errors import InvariantViolation
from engine.game import TableEngine
from engine.models import ActionType, Game, GameStatus, Player

from .helpers import make_table, perform_actions


def _contributions_game(entries):
    game = Game(id="pots")
    for seat, (player_id, total, folded) in enumerate(entries):
        game.players.append(
            Player(id=player_id, game_id=game.id, seat=seat, stack=0, total_in_pot=total, has_folded=folded)
        )
    game.pot = sum(total for _, total, _ in entries)
    return game


def test_heads_up_all_in_returns_the_uncalled_excess():
    engine, game = make_table((500, 1000))
    # p0 (button) gets aces, p1 gets 2-3 offsuit, board pairs kings.
    preset = ["2c", "Ah", "3d", "Ad", "Kh", "Ks", "7c", "8d", "9s"]
    engine.start_hand(game, seed=0, preset=preset)

    perform_actions(
        engine,
        game,
        [("p0", ActionType.CALL, None), ("p1", ActionType.RAISE, 980)],
    )
    assert game.player("p1").stack == 0
    outcome = engine.apply_action(game, "p0", ActionType.CALL)

    assert outcome.amount == 480
    assert outcome.showdown
    assert game.status == GameStatus.COMPLETED
    assert game.community_cards == ["Kh", "Ks", "7c", "8d", "9s"]
    assert game.player("p0").stack == 1000
    assert game.player("p1").stack == 500
    awards = [ev for ev in outcome.events if ev["ev"] == "POT_AWARD"]
    assert {"ev": "POT_AWARD", "player": "p0", "amount": 1000} in awards
    assert {"ev": "POT_AWARD", "player": "p1", "amount": 500} in awards


def test_short_stack_elimination_is_reported():
    engine, game = make_table((500, 1000))
    preset = ["Ah", "2c", "Ad", "3d", "Kh", "Ks", "7c", "8d", "9s"]
    engine.start_hand(game, seed=0, preset=preset)

    perform_actions(engine, game, [("p0", ActionType.CALL, None), ("p1", ActionType.RAISE, 980)])
    outcome = engine.apply_action(game, "p0", ActionType.CALL)

    assert {"ev": "ELIMINATED", "player": "p0"} in outcome.events
    assert outcome.events[-1]["ev"] == "ELIMINATED"
    assert game.player("p0").stack == 0
    assert game.player("p1").stack == 1500
    assert engine.is_match_over(game)
    assert not engine.can_start_hand(game)


def test_split_pot_gives_odd_chip_left_of_button():
    engine, game = make_table(small_blind=0, big_blind=0)
    # p1 and p2 both hold ace-king, p0 misses.
    preset = ["Ah", "As", "2c", "Kd", "Kc", "7d", "Qh", "Jd", "3s", "4c", "9h"]
    engine.start_hand(game, seed=0, preset=preset)

    perform_actions(
        engine,
        game,
        [("p0", ActionType.BET, 15), ("p1", ActionType.CALL, None), ("p2", ActionType.CALL, None)],
    )
    for _ in range(3):
        perform_actions(
            engine,
            game,
            [("p1", ActionType.CHECK, None), ("p2", ActionType.CHECK, None), ("p0", ActionType.CHECK, None)],
        )

    assert game.status == GameStatus.COMPLETED
    assert [p.stack for p in game.seated()] == [985, 1008, 1007]
    assert game.player("p1").has_won and game.player("p2").has_won
    assert not game.player("p0").has_won


def test_main_and_side_pots_go_to_different_winners():
    engine, game = make_table((100, 300, 1000), small_blind=0, big_blind=0)
    # p0 holds aces, p1 kings, p2 queens; the board helps nobody.
    preset = ["Kh", "Qh", "Ah", "Kd", "Qd", "Ad", "2c", "7s", "9d", "3h", "5c"]
    engine.start_hand(game, seed=0, preset=preset)

    perform_actions(engine, game, [("p0", ActionType.BET, 100), ("p1", ActionType.RAISE, 300)])
    assert engine.build_side_pots(game) == [(200, ["p0", "p1"]), (200, ["p1"])]
    outcome = engine.apply_action(game, "p2", ActionType.CALL)

    assert outcome.amount == 300
    assert game.status == GameStatus.COMPLETED
    assert len(game.community_cards) == 5
    awards = [ev for ev in outcome.events if ev["ev"] == "POT_AWARD"]
    assert {"ev": "POT_AWARD", "player": "p0", "amount": 300} in awards
    assert {"ev": "POT_AWARD", "player": "p1", "amount": 400} in awards
    assert {p.id: p.stack for p in game.seated()} == {"p0": 300, "p1": 400, "p2": 700}
    assert game.player("p0").has_won and game.player("p1").has_won
    assert not game.player("p2").has_won
    assert sum(p.stack for p in game.seated()) == 1_400


def test_build_side_pots_layers_all_in_contributions():
    game = _contributions_game([("a", 100, False), ("b", 300, False), ("c", 200, False)])
    pots = TableEngine().build_side_pots(game)
    assert pots == [(300, ["a", "b", "c"]), (200, ["b", "c"]), (100, ["b"])]
    assert sum(amount for amount, _ in pots) == game.pot


def test_folded_money_above_every_live_player_joins_the_previous_pot():
    game = _contributions_game([("a", 100, False), ("b", 300, True), ("c", 200, False)])
    pots = TableEngine().build_side_pots(game)
    assert pots == [(300, ["a", "c"]), (300, ["c"])]


def test_folded_players_are_never_contenders():
    game = _contributions_game([("a", 50, True), ("b", 200, False), ("c", 200, False)])
    pots = TableEngine().build_side_pots(game)
    assert pots == [(150, ["b", "c"]), (300, ["b", "c"])]


def test_pot_without_live_contenders_is_an_invariant_violation():
    game = _contributions_game([("a", 100, True), ("b", 100, True)])
    with pytest.raises(InvariantViolation):
        TableEngine().build_side_pots(game)
