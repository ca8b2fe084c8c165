import pytest

from engine.errors import ValidationError
from engine.models import ActionType, GameStatus, Round

from .helpers import auto_complete_hand, chips_in_play, make_table, perform_actions


def test_start_hand_moves_button_and_posts_blinds():
    engine, game = make_table()
    events = engine.start_hand(game, seed=1)

    assert game.hand_id == 1
    assert game.status == GameStatus.ACTIVE
    assert game.current_round == Round.PRE_FLOP
    assert game.player("p0").is_button
    assert [p.stack for p in game.seated()] == [1000, 990, 980]
    assert game.pot == 30
    assert game.current_highest_bet == 20
    assert game.current_player_turn == "p0"
    assert all(len(p.hole_cards) == 2 for p in game.players)
    assert len(game.deck) == 52 - 6
    assert events[0]["ev"] == "START_HAND"
    assert events[1] == {"ev": "POST_BLINDS", "sb_player": "p1", "bb_player": "p2", "sb": 10, "bb": 20}

    auto_complete_hand(engine, game)
    engine.start_hand(game, seed=2)
    assert game.player("p1").is_button
    assert game.current_player_turn == "p1"


def test_heads_up_button_posts_small_blind_and_acts_first():
    engine, game = make_table((1000, 1000))
    engine.start_hand(game, seed=3)

    button = game.player("p0")
    assert button.is_button
    assert button.current_bet == 10
    assert game.player("p1").current_bet == 20
    assert game.current_player_turn == "p0"

    engine.apply_action(game, "p0", ActionType.CALL)
    engine.apply_action(game, "p1", ActionType.CHECK)
    assert game.current_round == Round.FLOP
    # Post-flop the big blind acts first heads-up.
    assert game.current_player_turn == "p1"


def test_legal_actions_report_chips_to_add():
    engine, game = make_table()
    engine.start_hand(game, seed=4)

    legal = engine.legal_actions(game, "p0")
    assert legal.actions == (ActionType.FOLD, ActionType.CALL, ActionType.RAISE)
    assert legal.to_call == 20
    assert legal.min_amount == 40
    assert legal.max_amount == 1000

    engine.apply_action(game, "p0", ActionType.CALL)
    engine.apply_action(game, "p1", ActionType.CALL)
    legal = engine.legal_actions(game, "p2")
    assert legal.actions == (ActionType.FOLD, ActionType.CHECK, ActionType.RAISE)
    assert legal.to_call == 0


def test_out_of_turn_action_is_rejected_without_changes():
    engine, game = make_table()
    engine.start_hand(game, seed=5)

    with pytest.raises(ValidationError, match="Not player's turn") as excinfo:
        engine.apply_action(game, "p1", ActionType.CALL)
    assert excinfo.value.code == "OUT_OF_TURN"
    assert game.pot == 30
    assert game.current_player_turn == "p0"


def test_replaying_an_applied_action_is_rejected():
    engine, game = make_table()
    engine.start_hand(game, seed=6)
    engine.apply_action(game, "p0", ActionType.CALL)
    pot = game.pot

    with pytest.raises(ValidationError, match="Not player's turn"):
        engine.apply_action(game, "p0", ActionType.CALL)
    assert game.pot == pot


@pytest.mark.parametrize(
    "action, amount, message",
    [
        (ActionType.CHECK, None, "Cannot check, there is a bet to call"),
        (ActionType.CALL, 10, "Call must be exactly 20"),
        (ActionType.BET, 100, "Cannot bet; there is already a bet. Use raise."),
        (ActionType.RAISE, 30, "Minimum raise is to 40"),
        (ActionType.RAISE, 20, "Raise must exceed current bet"),
        (ActionType.RAISE, 5_000, "Amount exceeds stack"),
        (ActionType.RAISE, None, "requires a positive amount"),
    ],
)
def test_invalid_actions_are_rejected(action, amount, message):
    engine, game = make_table()
    engine.start_hand(game, seed=7)
    before = chips_in_play(game)

    with pytest.raises(ValidationError, match=message):
        engine.apply_action(game, "p0", action, amount)
    assert chips_in_play(game) == before
    assert game.player("p0").stack == 1000


def test_non_integer_amount_is_a_schema_error():
    engine, game = make_table()
    engine.start_hand(game, seed=8)
    with pytest.raises(ValidationError) as excinfo:
        engine.apply_action(game, "p0", ActionType.RAISE, 40.5)
    assert excinfo.value.code == "BAD_SCHEMA"


def test_folded_and_unknown_players_cannot_act():
    engine, game = make_table()
    engine.start_hand(game, seed=9)
    engine.apply_action(game, "p0", ActionType.FOLD)

    with pytest.raises(ValidationError, match="already folded"):
        engine.apply_action(game, "p0", ActionType.CHECK)
    with pytest.raises(ValidationError, match="Player not found"):
        engine.apply_action(game, "ghost", ActionType.CHECK)


def test_no_action_accepted_outside_an_active_hand():
    engine, game = make_table()
    with pytest.raises(ValidationError, match="Game is not active"):
        engine.apply_action(game, "p0", ActionType.CHECK)


def test_bet_below_minimum_is_rejected_post_flop():
    engine, game = make_table()
    engine.start_hand(game, seed=10)
    perform_actions(
        engine,
        game,
        [("p0", ActionType.CALL, None), ("p1", ActionType.CALL, None), ("p2", ActionType.CHECK, None)],
    )
    assert game.current_round == Round.FLOP
    assert game.current_player_turn == "p1"

    with pytest.raises(ValidationError, match="Minimum bet is 20"):
        engine.apply_action(game, "p1", ActionType.BET, 10)
    with pytest.raises(ValidationError, match="No bet to call"):
        engine.apply_action(game, "p1", ActionType.CALL)
    with pytest.raises(ValidationError, match="No bet to raise; use bet"):
        engine.apply_action(game, "p1", ActionType.RAISE, 40)

    engine.apply_action(game, "p1", ActionType.BET, 20)
    assert game.current_highest_bet == 20


def test_raise_sets_new_minimum_and_reopens_action():
    engine, game = make_table()
    engine.start_hand(game, seed=11)

    engine.apply_action(game, "p0", ActionType.RAISE, 60)
    assert game.current_highest_bet == 60
    assert game.min_raise_increment == 40
    assert game.last_aggressor_id == "p0"

    legal = engine.legal_actions(game, "p1")
    assert legal.to_call == 50
    assert legal.min_amount == 100 - 10

    engine.apply_action(game, "p1", ActionType.CALL)
    engine.apply_action(game, "p2", ActionType.RAISE, 140)
    assert game.current_highest_bet == 160
    assert game.current_player_turn == "p0"
    assert game.current_round == Round.PRE_FLOP


def test_short_all_in_raise_is_allowed_below_the_minimum():
    engine, game = make_table((25, 1000, 1000))
    engine.start_hand(game, seed=12)

    engine.apply_action(game, "p0", ActionType.RAISE, 25)
    assert game.player("p0").stack == 0
    assert game.current_highest_bet == 25
    # Not a full raise: the minimum increment is unchanged.
    assert game.min_raise_increment == 20
    assert game.last_aggressor_id == "p2"


def test_timeout_folds_facing_a_bet_and_checks_when_free():
    engine, game = make_table()
    engine.start_hand(game, seed=13)

    outcome = engine.apply_action(game, "p0", ActionType.TIMEOUT)
    assert outcome.requested == ActionType.TIMEOUT
    assert outcome.resolved == ActionType.FOLD
    assert game.player("p0").has_folded
    assert outcome.events[0] == {"ev": "TIMEOUT", "player": "p0", "resolved": "fold"}

    engine.apply_action(game, "p1", ActionType.CALL)
    outcome = engine.apply_action(game, "p2", ActionType.TIMEOUT)
    assert outcome.resolved == ActionType.CHECK
    assert outcome.round_changed
    assert game.current_round == Round.FLOP


def test_everyone_folding_awards_the_pot():
    engine, game = make_table()
    engine.start_hand(game, seed=14)

    engine.apply_action(game, "p0", ActionType.FOLD)
    outcome = engine.apply_action(game, "p1", ActionType.FOLD)

    assert outcome.hand_complete
    assert not outcome.showdown
    assert game.status == GameStatus.COMPLETED
    assert game.current_player_turn is None
    assert game.pot == 0
    assert [p.stack for p in game.seated()] == [1000, 990, 1010]
    assert game.player("p2").has_won
    assert {"ev": "POT_AWARD", "player": "p2", "amount": 30} in outcome.events


def test_three_player_bet_call_fold_reaches_the_flop():
    engine, game = make_table(small_blind=0, big_blind=0)
    engine.start_hand(game, seed=15)
    assert game.current_player_turn == "p0"
    assert game.pot == 0

    engine.apply_action(game, "p0", ActionType.BET, 100)
    engine.apply_action(game, "p1", ActionType.CALL, 100)
    assert game.current_round == Round.PRE_FLOP
    assert game.current_player_turn == "p2"

    outcome = engine.apply_action(game, "p2", ActionType.FOLD)
    assert outcome.round_changed
    assert game.current_round == Round.FLOP
    assert len(game.community_cards) == 3
    assert game.pot == 200
    assert [p.stack for p in game.seated()] == [900, 900, 1000]
    assert game.current_player_turn == "p1"
    assert any(ev["ev"] == "FLOP" for ev in outcome.events)


def test_full_hand_runs_to_showdown_and_conserves_chips():
    engine, game = make_table((1000, 1000, 1000, 1000))
    engine.start_hand(game, seed=16)
    auto_complete_hand(engine, game)

    assert game.status == GameStatus.COMPLETED
    assert game.current_round == Round.SHOWDOWN
    assert len(game.community_cards) == 5
    assert sum(p.stack for p in game.players) == 4000
    assert any(p.has_won for p in game.players)
    assert all(p.hand_name for p in game.players)


def test_preset_deck_deals_hole_cards_from_left_of_button():
    engine, game = make_table((1000, 1000))
    preset = ["Ah", "Kd", "As", "Kc", "2h", "7d", "9c", "Jh", "3s"]
    engine.start_hand(game, seed=0, preset=preset)

    assert game.player("p1").hole_cards == ["Ah", "As"]
    assert game.player("p0").hole_cards == ["Kd", "Kc"]
    assert len(set(game.deck)) == len(game.deck) == 48


def test_preset_deck_rejects_duplicates():
    engine, game = make_table((1000, 1000))
    with pytest.raises(ValidationError) as excinfo:
        engine.start_hand(game, preset=["Ah", "Ah"])
    assert excinfo.value.code == "BAD_DECK"
    assert game.status == GameStatus.WAITING


def test_seating_rules():
    engine, game = make_table((1000, 1000))
    engine.config.seats = 6

    with pytest.raises(ValidationError) as excinfo:
        engine.add_player(game, "p9", 0)
    assert excinfo.value.code == "BAD_STACK"

    first = engine.add_player(game, "p2", 500, user_id="u2")
    again = engine.add_player(game, "other", 500, user_id="u2")
    assert again is first

    engine.start_hand(game, seed=17)
    late = engine.add_player(game, "p3", 500)
    assert late.has_folded
    assert late.hole_cards == []
    assert game.current_player_turn != "p3"


def test_table_full_and_start_requirements():
    engine, game = make_table((1000, 1000))
    engine.config.seats = 2
    with pytest.raises(ValidationError) as excinfo:
        engine.add_player(game, "p2", 1000)
    assert excinfo.value.code == "TABLE_FULL"

    _, lonely = make_table((1000,))
    with pytest.raises(ValidationError) as excinfo:
        engine.start_hand(lonely)
    assert excinfo.value.code == "NOT_ENOUGH_PLAYERS"

    engine.start_hand(game, seed=1)
    with pytest.raises(ValidationError) as excinfo:
        engine.start_hand(game)
    assert excinfo.value.code == "HAND_IN_PROGRESS"


def test_snapshot_hides_other_hole_cards_until_showdown():
    engine, game = make_table()
    engine.start_hand(game, seed=18)

    view = engine.snapshot(game, viewer_id="p0")
    assert view.player("p0").hole_cards == tuple(game.player("p0").hole_cards)
    assert view.player("p1").hole_cards == ()
    assert view.legal is not None
    assert engine.snapshot(game, viewer_id="p1").legal is None
    assert all(p.hole_cards for p in engine.snapshot(game, reveal_all=True).players)

    auto_complete_hand(engine, game)
    final = engine.snapshot(game, viewer_id="p0")
    assert all(len(p.hole_cards) == 2 for p in final.players)

    payload = final.to_payload()
    assert payload["status"] == "completed"
    assert payload["legal"] is None


def test_snapshot_hides_folded_cards_at_showdown():
    engine, game = make_table()
    engine.start_hand(game, seed=19)
    engine.apply_action(game, "p0", ActionType.FOLD)
    auto_complete_hand(engine, game)

    final = engine.snapshot(game, viewer_id="p1")
    assert final.player("p0").hole_cards == ()
    assert final.player("p2").hole_cards


def test_snapshot_reports_all_in_players_and_the_last_aggressor():
    engine, game = make_table((100, 1000, 1000), small_blind=0, big_blind=0)
    engine.start_hand(game, seed=20)
    assert engine.snapshot(game).last_aggressor_id is None

    engine.apply_action(game, "p0", ActionType.BET, 100)
    view = engine.snapshot(game, viewer_id="p1")
    assert view.last_aggressor_id == "p0"
    assert view.player("p0").is_all_in
    assert not view.player("p1").is_all_in

    payload = view.to_payload()
    assert payload["last_aggressor_id"] == "p0"
    assert [p["is_all_in"] for p in payload["players"]] == [True, False, False]
