"""Tests for undo and redo across every kind of mutation."""

from __future__ import annotations

import pytest

from podrank.domain.common import GameStatus, Outcome, Participant
from podrank.domain.elo import PRIOR_MU, PRIOR_SIGMA
from podrank.domain.errors import ValidationError
from podrank.domain.snapshots import MatchSnapshot, OverrideSnapshot
from support import league_state, pod


def test_undo_and_redo_round_trip_every_mutation(league, session_factory) -> None:
    first = league.submit_game("player", pod(("p1", "w"), ("p2", "l"), ("p3", "l"), ("p4", "l")))
    second = league.submit_game(
        "player",
        [
            Participant("p1", Outcome.LOSS, 1, "Atraxa"),
            Participant("p2", Outcome.WIN, 2, "Kinnan"),
            Participant("p3", Outcome.LOSS, None, "Yuriko"),
            Participant("p5", Outcome.LOSS),
        ],
    )
    league.submit_game("deck", pod(("Atraxa", "l"), ("Kinnan", "w"), ("Najeela", "l")))
    league.toggle_game_active(first.game_id, False)
    league.set_turn_order(second.game_id, "p3", 3)
    league.override_rating("player", "p2", elo=1200, actor="admin", reason="tournament seed")
    final = league_state(session_factory)

    for _ in range(6):
        assert league.undo() is not None
    assert league.undo() is None

    undone = league_state(session_factory)
    assert undone["matches"] == []
    assert undone["deck_matches"] == []
    assert {status for _, _, status, _ in undone["games"]} == {GameStatus.UNDONE.value}
    for player in undone["players"]:
        assert player[1:6] == (PRIOR_MU, PRIOR_SIGMA, 0, 0, 0)

    for _ in range(6):
        assert league.redo() is not None
    assert league.redo() is None

    assert league_state(session_factory) == final


def test_undoing_an_appended_game_keeps_unrelated_overrides(league) -> None:
    league.submit_game("player", pod(("p1", "w"), ("p2", "l")))
    league.override_rating("player", "p1", elo=1150)
    league.submit_game("player", pod(("p3", "w"), ("p4", "l")))

    result = league.undo()

    assert isinstance(result.snapshot, MatchSnapshot)
    assert league.get_entity("player", "p1").elo == 1150
    assert league.get_entity("player", "p3") is None
    assert league.get_entity("player", "p4") is None

    undone = league.undo()
    assert isinstance(undone.snapshot, OverrideSnapshot)
    assert league.get_entity("player", "p1").elo != 1150
    league.redo()
    assert league.get_entity("player", "p1").elo == 1150


def test_new_mutation_clears_redo(league) -> None:
    league.submit_game("player", pod(("p1", "w"), ("p2", "l")))
    league.undo()
    assert league.ledger.redo_depth == 1

    league.submit_game("player", pod(("p1", "l"), ("p2", "w")))

    assert league.redo() is None


def test_undo_of_injected_game_replays_history(league) -> None:
    league.submit_game("player", pod(("p1", "w"), ("p2", "l"), ("p3", "l")))
    league.submit_game("player", pod(("p1", "l"), ("p2", "w"), ("p3", "l")))
    baseline = {player: league.get_entity("player", player) for player in ("p1", "p2", "p3")}

    result = league.submit_game("player", pod(("p1", "l"), ("p2", "l"), ("p3", "w")), anchor="0")
    assert result.injected is True
    assert league.get_entity("player", "p3").games_played == 3

    league.undo()

    for player, view in baseline.items():
        restored = league.get_entity("player", player)
        assert (restored.mu, restored.sigma, restored.games_played) == (view.mu, view.sigma, view.games_played)

    league.redo()
    assert league.get_entity("player", "p3").games_played == 3


def test_override_variants_and_descriptions(league) -> None:
    league.submit_game("player", pod(("p1", "w"), ("p2", "l")))

    summary = league.override_rating("player", "p1", elo=1180)
    assert summary.after.elo == 1180
    assert summary.after.sigma == pytest.approx(PRIOR_SIGMA)
    assert summary.change_type.value == "manual"

    counts = league.override_rating("player", "p1", wld="5/2/1")
    assert counts.change_type.value == "wld_adjustment"
    assert (counts.after.wins, counts.after.losses, counts.after.draws) == (5, 2, 1)

    league.undo()
    view = league.get_entity("player", "p1")
    assert (view.wins, view.losses, view.draws) == (1, 0, 0)
    assert view.elo == 1180

    with pytest.raises(ValidationError, match="Nothing to override"):
        league.override_rating("player", "p1")


def test_undoing_an_appended_game_removes_entities_it_created(league, session_factory) -> None:
    league.submit_game("player", pod(("p1", "w", "Atraxa"), ("p2", "l", "Kinnan")))
    league.submit_game(
        "player",
        pod(("p1", "w", "Atraxa"), ("p3", "l", "Yuriko"), ("p4", "l", "Najeela"), ("p5", "l")),
    )
    final = league_state(session_factory)

    league.undo()

    assert league.get_entity("player", "p1").games_played == 1
    assert league.get_entity("player", "p3") is None
    assert league.get_entity("player", "p5") is None
    assert league.get_entity("player", "p4") is None
    assert league.get_entity("deck", "atraxa").games_played == 1
    assert league.get_entity("deck", "yuriko") is None
    assert league.get_entity("deck", "najeela") is None

    league.redo()

    assert league_state(session_factory) == final
    assert league.get_entity("deck", "yuriko").display_name == "Yuriko"
