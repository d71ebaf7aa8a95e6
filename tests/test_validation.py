"""Unit tests for submission validation helpers."""

from __future__ import annotations

import re

import pytest

from podrank.domain.common import GameType, Outcome, Participant
from podrank.domain.errors import ValidationError
from podrank.domain.validation import (
    SubmissionLimits,
    generate_game_id,
    normalize_deck_name,
    parse_wld,
    validate_outcomes,
    validate_participants,
)


def _players(outcomes: str, turn_orders: list[int | None] | None = None) -> list[Participant]:
    orders = turn_orders or [None] * len(outcomes)
    return [
        Participant(f"p{index}", Outcome(outcome), order)
        for index, (outcome, order) in enumerate(zip(outcomes, orders), start=1)
    ]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Atraxa, Praetors' Voice", "atraxa-praetors-voice"),
        ("  Kinnan --  Bonder  Prodigy ", "kinnan-bonder-prodigy"),
        ("Yuriko!!", "yuriko"),
        ("nocommander", "nocommander"),
    ],
)
def test_normalize_deck_name(raw: str, expected: str) -> None:
    assert normalize_deck_name(raw) == expected


@pytest.mark.parametrize("outcomes", ["wlll", "wl", "dddd", "lwl"])
def test_valid_outcome_combinations(outcomes: str) -> None:
    validate_outcomes([Outcome(value) for value in outcomes])


@pytest.mark.parametrize("outcomes", ["wwll", "llll", "wdll", "dl"])
def test_invalid_outcome_combinations(outcomes: str) -> None:
    with pytest.raises(ValidationError, match="Invalid outcome combination"):
        validate_outcomes([Outcome(value) for value in outcomes])


def test_player_count_limits() -> None:
    limits = SubmissionLimits()
    validate_participants(GameType.PLAYER, _players("wl"), limits)
    with pytest.raises(ValidationError, match="2-4 players"):
        validate_participants(GameType.PLAYER, _players("w"), limits)
    with pytest.raises(ValidationError, match="2-4 players"):
        validate_participants(GameType.PLAYER, _players("wllll"), limits)


def test_cedh_mode_requires_full_pods() -> None:
    limits = SubmissionLimits(cedh_mode=True)
    validate_participants(GameType.PLAYER, _players("wlll"), limits)
    with pytest.raises(ValidationError, match="exactly 4 players"):
        validate_participants(GameType.PLAYER, _players("wll"), limits)


def test_deck_games_need_three_decks() -> None:
    decks = [Participant("atraxa", Outcome.WIN), Participant("kinnan", Outcome.LOSS)]
    with pytest.raises(ValidationError, match="3-4 decks"):
        validate_participants(GameType.DECK, decks, SubmissionLimits())


def test_duplicate_decks_are_allowed_in_deck_games() -> None:
    decks = [
        Participant("atraxa", Outcome.WIN),
        Participant("atraxa", Outcome.LOSS),
        Participant("kinnan", Outcome.LOSS),
    ]
    validate_participants(GameType.DECK, decks, SubmissionLimits())


def test_duplicate_players_are_rejected() -> None:
    players = [Participant("p1", Outcome.WIN), Participant("p1", Outcome.LOSS), Participant("p2", Outcome.LOSS)]
    with pytest.raises(ValidationError, match="more than once: p1"):
        validate_participants(GameType.PLAYER, players, SubmissionLimits())


def test_turn_orders_must_be_unique_and_in_range() -> None:
    limits = SubmissionLimits()
    validate_participants(GameType.PLAYER, _players("wll", [2, None, 1]), limits)
    with pytest.raises(ValidationError, match="assigned more than once"):
        validate_participants(GameType.PLAYER, _players("wll", [1, 1, 2]), limits)
    with pytest.raises(ValidationError, match="between 1 and 4"):
        validate_participants(GameType.PLAYER, _players("wl", [1, 5]), limits)


def test_parse_wld() -> None:
    assert parse_wld("3/2/1") == (3, 2, 1)
    with pytest.raises(ValidationError):
        parse_wld("3/2")
    with pytest.raises(ValidationError):
        parse_wld("a/b/c")
    with pytest.raises(ValidationError):
        parse_wld("1/-1/0")


def test_generate_game_id_skips_taken_ids() -> None:
    taken: set[str] = set()
    for _ in range(20):
        game_id = generate_game_id(taken.__contains__)
        assert re.fullmatch(r"[0-9A-F]{6}", game_id)
        assert game_id not in taken
        taken.add(game_id)
