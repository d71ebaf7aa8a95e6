"""Tests for game submission, history injection and replay."""

from __future__ import annotations

import pytest

from podrank.domain.common import GameStatus, Outcome, Participant, TargetType
from podrank.domain.errors import AlreadyPendingError, NotFoundError, ValidationError
from podrank.services.league import LeagueService
from support import league_state, pod

PLAYERS = [f"p{index}" for index in range(10)]


def _rotating_games(league: LeagueService, count: int = 10) -> None:
    """Four-player games over a ring of ten players, the first seat winning."""
    for index in range(count):
        seats = [PLAYERS[(index + offset) % len(PLAYERS)] for offset in range(4)]
        league.submit_game("player", pod(*((player, "w" if offset == 0 else "l") for offset, player in enumerate(seats))))


def _ratings(league: LeagueService, ids: list[str]) -> dict[str, tuple[float, float]]:
    views = {entity_id: league.get_entity("player", entity_id) for entity_id in ids}
    return {entity_id: (view.mu, view.sigma) for entity_id, view in views.items()}


def test_four_player_submission_from_priors(league) -> None:
    result = league.submit_game("player", pod(("p1", "w"), ("p2", "l"), ("p3", "l"), ("p4", "l")))

    winner, *losers = result.participants
    assert result.injected is False
    assert winner.before.elo == 1000
    assert winner.after.elo >= 1003
    assert winner.after.wins == 1
    for loser in losers:
        assert loser.after.elo <= 999
        assert loser.after.losses == 1

    view = league.get_entity("player", "p1")
    assert view.elo == winner.after.elo
    assert view.games_played == 1


def test_invalid_submission_writes_nothing(league, session_factory) -> None:
    with pytest.raises(ValidationError, match="Invalid outcome combination"):
        league.submit_game("player", pod(("p1", "w"), ("p2", "w"), ("p3", "l")))

    state = league_state(session_factory)
    assert state["games"] == []
    assert state["players"] == []


def test_restricted_player_cannot_be_submitted(league, session_factory) -> None:
    league.set_player_restricted("p9", True)

    with pytest.raises(ValidationError, match="p9 is restricted"):
        league.submit_game("player", pod(("p1", "w"), ("p9", "l")))
    assert league_state(session_factory)["games"] == []


def test_player_game_rates_piloted_decks(league) -> None:
    result = league.submit_game(
        "player",
        pod(("p1", "w", "Atraxa, Praetors' Voice"), ("p2", "l", "Kinnan"), ("p3", "l", "nocommander"), ("p4", "l")),
    )

    assert [(item.entity_id, item.assigned_player_id) for item in result.commanders] == [
        ("atraxa-praetors-voice", "p1"),
        ("kinnan", "p2"),
    ]
    deck = league.get_entity("deck", "Atraxa, Praetors' Voice")
    assert deck.display_name == "Atraxa, Praetors' Voice"
    assert deck.wins == 1
    assert deck.elo > 1000
    _, commanders = league.game_rows(result.game_id)
    assert len(commanders) == 2


def test_single_deck_in_player_game_is_not_rated(league) -> None:
    result = league.submit_game("player", pod(("p1", "w", "Atraxa"), ("p2", "l"), ("p3", "l")))

    assert result.commanders == ()
    assert league.get_entity("deck", "atraxa").games_played == 0


def test_duplicate_decks_in_a_deck_game(league) -> None:
    result = league.submit_game("deck", pod(("Atraxa", "w"), ("atraxa", "l"), ("Kinnan", "l"), ("Yuriko", "l")))

    atraxa_rows = [item for item in result.participants if item.entity_id == "atraxa"]
    assert len(atraxa_rows) == 2
    assert atraxa_rows[0].after == atraxa_rows[1].after
    view = league.get_entity("deck", "atraxa")
    assert (view.wins, view.losses) == (1, 1)


def test_injecting_before_history_changes_every_later_rating(league) -> None:
    _rotating_games(league)
    before = _ratings(league, PLAYERS)

    result = league.submit_game("player", pod(("p0", "l"), ("p1", "w"), ("p2", "l"), ("p3", "l")), anchor="0")

    assert result.injected is True
    assert result.sequence == pytest.approx(0.5)
    after = _ratings(league, PLAYERS)
    for player in PLAYERS:
        assert after[player] != before[player]
    assert league.get_entity("player", "p1").games_played == 5


def test_injection_rewrites_stored_ratings_of_later_games(league) -> None:
    league.submit_game("player", pod(("p1", "w", "Atraxa"), ("p2", "l", "Kinnan")))
    last = league.submit_game("player", pod(("p1", "l", "Atraxa"), ("p2", "w", "Kinnan")))
    matches, commanders = league.game_rows(last.game_id)
    stored = {row.player_id: (row.mu, row.sigma) for row in matches}

    league.submit_game("player", pod(("p1", "w", "Atraxa"), ("p2", "l", "Kinnan")), anchor="0")

    matches, commanders = league.game_rows(last.game_id)
    for row in matches:
        view = league.get_entity("player", row.player_id)
        assert (row.mu, row.sigma) == (view.mu, view.sigma)
        assert (row.mu, row.sigma) != stored[row.player_id]
    for row in commanders:
        view = league.get_entity("deck", row.deck_id)
        assert (row.mu, row.sigma) == (view.mu, view.sigma)


def test_replay_is_idempotent(league, session_factory) -> None:
    _rotating_games(league, 6)
    league.submit_game("deck", pod(("Atraxa", "w"), ("Kinnan", "l"), ("Yuriko", "l")))
    league.recalculate()
    first = league_state(session_factory)

    league.recalculate()

    assert league_state(session_factory) == first


def test_live_ratings_match_a_full_replay(league, session_factory) -> None:
    _rotating_games(league, 5)
    league.submit_game("player", pod(("p1", "l", "Atraxa"), ("p2", "w", "Kinnan"), ("p3", "l", "Yuriko")))
    league.submit_game("deck", pod(("Atraxa", "w"), ("Kinnan", "l"), ("Kinnan", "l")))
    league.submit_game("player", pod(("p1", "d", "Atraxa"), ("p2", "d", "Yuriko"), ("p4", "d"), ("p5", "d")))
    live = league_state(session_factory)

    summaries = league.recalculate()

    assert {summary.target_type for summary in summaries} == {TargetType.PLAYER, TargetType.DECK}
    assert not any(summary.partial for summary in summaries)
    assert league_state(session_factory) == live


def test_game_order_changes_final_ratings(make_session_factory, league_config, clock) -> None:
    first_league = LeagueService(make_session_factory("first"), league_config, clock=clock)
    second_league = LeagueService(make_session_factory("second"), league_config, clock=clock)
    game_a = pod(("p1", "w"), ("p2", "l"), ("p3", "l"), ("p4", "l"))
    game_b = pod(("p1", "l"), ("p2", "w"), ("p3", "l"), ("p4", "l"))
    game_c = pod(("p1", "l"), ("p2", "l"), ("p3", "w"), ("p4", "l"))

    for participants in (game_a, game_b, game_c):
        first_league.submit_game("player", participants)
    for participants in (game_b, game_a, game_c):
        second_league.submit_game("player", participants)

    first = first_league.get_entity("player", "p1")
    second = second_league.get_entity("player", "p1")
    assert (first.mu, first.sigma) != (second.mu, second.sigma)
    assert (first.wins, first.losses) == (second.wins, second.losses)


def test_toggling_a_game_inactive_replays_without_it(league) -> None:
    first = league.submit_game("player", pod(("p1", "w"), ("p2", "l"), ("p3", "l"), ("p4", "l")))
    league.submit_game("player", pod(("p5", "w"), ("p6", "l"), ("p7", "l")))
    rated = league.get_entity("player", "p1")

    league.toggle_game_active(first.game_id, False)

    inactive = league.get_entity("player", "p1")
    assert inactive.games_played == 0
    assert inactive.elo == 1000
    assert league.get_game(first.game_id).active is False
    with pytest.raises(ValidationError, match="already inactive"):
        league.toggle_game_active(first.game_id, False)

    league.toggle_game_active(first.game_id, True)
    restored = league.get_entity("player", "p1")
    assert (restored.mu, restored.sigma) == (rated.mu, rated.sigma)


def test_turn_order_edits(league) -> None:
    participants = [
        Participant("p1", Outcome.WIN, turn_order=1),
        Participant("p2", Outcome.LOSS, turn_order=2),
        Participant("p3", Outcome.LOSS, turn_order=3),
    ]
    result = league.submit_game("player", participants)

    with pytest.raises(ValidationError, match="already assigned to another player"):
        league.set_turn_order(result.game_id, "p1", 2)
    with pytest.raises(ValidationError, match="between 1 and 4"):
        league.set_turn_order(result.game_id, "p1", 5)
    with pytest.raises(NotFoundError):
        league.set_turn_order(result.game_id, "p9", 4)

    league.set_turn_order(result.game_id, "p1", 4)
    league.set_turn_order(result.game_id, "p2", 0)
    matches, _ = league.game_rows(result.game_id)
    assert {row.player_id: row.turn_order for row in matches} == {"p1": 4, "p2": None, "p3": 3}

    league.remove_turn_orders(result.game_id)
    matches, _ = league.game_rows(result.game_id)
    assert all(row.turn_order is None for row in matches)
    with pytest.raises(ValidationError, match="No turn orders"):
        league.remove_turn_orders(result.game_id)


def test_default_deck_is_used_and_history_reassignment_replays_decks(league) -> None:
    league.set_deck_assignment("p1", "Atraxa")
    result = league.submit_game("player", pod(("p1", "w"), ("p2", "l", "Kinnan"), ("p3", "l")))
    matches, _ = league.game_rows(result.game_id)
    assert {row.player_id: row.deck_ref for row in matches}["p1"] == "atraxa"
    assert league.get_entity("deck", "atraxa").wins == 1

    league.set_deck_assignment("p1", "Yuriko", game_id=result.game_id)

    assert league.get_entity("deck", "yuriko").wins == 1
    assert league.get_entity("deck", "atraxa").games_played == 0
    assert league.get_entity("player", "p1").default_deck == "atraxa"

    league.undo()
    assert league.get_entity("deck", "atraxa").wins == 1
    assert league.get_entity("deck", "yuriko") is None


def test_pending_submission_lifecycle(league, monotonic) -> None:
    pending = league.propose_game("player", pod(("p1", "w"), ("p2", "l"), ("p3", "l")))

    with pytest.raises(AlreadyPendingError):
        league.propose_game("player", pod(("p3", "w"), ("p4", "l")))
    with pytest.raises(AlreadyPendingError):
        league.submit_game("player", pod(("p2", "w"), ("p4", "l")))

    result = league.confirm_game(pending.token)
    assert len(result.participants) == 3
    league.submit_game("player", pod(("p2", "w"), ("p4", "l")))

    cancelled = league.propose_game("player", pod(("p1", "w"), ("p2", "l")))
    assert league.cancel_game(cancelled.token) is True
    with pytest.raises(NotFoundError):
        league.confirm_game(cancelled.token)

    expired = league.propose_game("player", pod(("p1", "w"), ("p2", "l")))
    monotonic.value = 301.0
    assert [item.token for item in league.expire_pending()] == [expired.token]
    with pytest.raises(NotFoundError):
        league.confirm_game(expired.token)
    league.submit_game("player", pod(("p1", "w"), ("p2", "l")))


def test_replay_removes_entities_without_games(league) -> None:
    result = league.submit_game("player", pod(("p1", "w", "Atraxa"), ("p2", "l", "Kinnan")))
    league.edit_game_results(result.game_id, pod(("p3", "w"), ("p4", "l")))

    assert league.get_entity("player", "p1") is None
    assert league.get_entity("player", "p2") is None
    assert league.get_entity("deck", "atraxa") is None
    assert league.get_entity("deck", "kinnan") is None

    league.set_player_restricted("p9", True)
    league.set_player_restricted("p9", False)
    assert league.get_entity("player", "p9").games_played == 0

    summaries = league.recalculate()

    removed = {summary.target_type: summary.removed_entities for summary in summaries}
    assert removed == {TargetType.PLAYER: ("p9",), TargetType.DECK: ()}
    assert league.get_entity("player", "p9") is None


def test_undone_game_is_kept_with_undone_status(league) -> None:
    result = league.submit_game("player", pod(("p1", "w"), ("p2", "l")))
    league.undo()

    assert league.get_game(result.game_id).status == GameStatus.UNDONE.value
    matches, commanders = league.game_rows(result.game_id)
    assert matches == [] and commanders == []


def test_editing_game_results_replays_and_is_undoable(league, session_factory) -> None:
    first = league.submit_game("player", pod(("p1", "w", "Atraxa"), ("p2", "l", "Kinnan"), ("p3", "l")))
    league.submit_game("player", pod(("p1", "l"), ("p2", "w"), ("p3", "l")))
    original = league_state(session_factory)

    result = league.edit_game_results(first.game_id, pod(("p1", "l"), ("p2", "w"), ("p3", "l")), actor="admin")

    assert result.description == f"result edit of player game {first.game_id}"
    p1 = league.get_entity("player", "p1")
    assert (p1.wins, p1.losses) == (0, 2)
    matches, commanders = league.game_rows(first.game_id)
    assert {row.player_id: row.deck_ref for row in matches} == {"p1": "atraxa", "p2": "kinnan", "p3": None}
    assert {row.deck_id: row.outcome for row in commanders} == {"atraxa": "l", "kinnan": "w"}

    league.undo()
    assert league_state(session_factory) == original

    league.redo()
    assert league.get_entity("deck", "kinnan").wins == 1


def test_editing_results_validates_before_writing(league, session_factory) -> None:
    game = league.submit_game("player", pod(("p1", "w"), ("p2", "l")))
    before = league_state(session_factory)

    with pytest.raises(ValidationError):
        league.edit_game_results(game.game_id, pod(("p1", "w"), ("p2", "w")))
    with pytest.raises(NotFoundError):
        league.edit_game_results("ZZZZZZ", pod(("p1", "w"), ("p2", "l")))

    assert league_state(session_factory) == before


def test_predict_uses_current_ratings_without_creating_entities(league) -> None:
    equal = league.predict("player", ["p1", "p2", "p3", "p4"])
    assert [item.probability for item in equal] == pytest.approx([0.25] * 4)
    assert not any(item.rated for item in equal)
    assert league.get_entity("player", "p1") is None

    league.submit_game("player", pod(("p1", "w"), ("p2", "l"), ("p3", "l")))
    predictions = league.predict("player", ["p2", "p1", "p4"])

    assert [item.entity_id for item in predictions] == ["p2", "p1", "p4"]
    assert sum(item.probability for item in predictions) == pytest.approx(1.0)
    chances = {item.entity_id: item.probability for item in predictions}
    assert chances["p1"] > chances["p4"] > chances["p2"]
    assert predictions[1].elo == league.get_entity("player", "p1").elo
    assert predictions[2].rated is False


def test_predict_rejects_too_few_or_repeated_entities(league) -> None:
    with pytest.raises(ValidationError, match="At least two"):
        league.predict("player", ["p1"])
    with pytest.raises(ValidationError, match="only once"):
        league.predict("deck", ["Atraxa", "atraxa"])
