"""Submission validation and identifier helpers."""

from __future__ import annotations

import re
import secrets
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from podrank.domain.common import GameType, Outcome, Participant
from podrank.domain.errors import ValidationError

BEFORE_ALL_ANCHOR = "0"
NO_DECK = "nocommander"
MAX_TURN_ORDER = 4

_NON_WORD = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


@dataclass(frozen=True)
class SubmissionLimits:
    min_players: int = 2
    max_players: int = 4
    min_decks: int = 3
    max_decks: int = 4
    cedh_mode: bool = False


def normalize_deck_name(name: str) -> str:
    """Canonical deck id: lowercase words joined by single dashes."""
    normalized = _NON_WORD.sub("", name.strip().lower())
    normalized = _WHITESPACE.sub("-", normalized)
    normalized = _DASHES.sub("-", normalized)
    return normalized.strip("-")


def validate_outcomes(outcomes: Sequence[Outcome]) -> None:
    """Exactly one winner with everyone else losing, or an all-draw game."""
    counts = Counter(outcomes)
    if counts[Outcome.DRAW] == len(outcomes):
        return
    if counts[Outcome.WIN] == 1 and counts[Outcome.LOSS] == len(outcomes) - 1:
        return
    summary = "".join(outcome.value for outcome in outcomes)
    raise ValidationError(
        f"Invalid outcome combination '{summary}': expected exactly one winner and the rest losers, or all draws"
    )


def validate_turn_order(turn_order: int) -> None:
    if not 1 <= turn_order <= MAX_TURN_ORDER:
        raise ValidationError(f"Turn order must be between 1 and {MAX_TURN_ORDER}, got {turn_order}")


def validate_turn_orders(participants: Sequence[Participant]) -> None:
    seen: set[int] = set()
    for participant in participants:
        if participant.turn_order is None:
            continue
        validate_turn_order(participant.turn_order)
        if participant.turn_order in seen:
            raise ValidationError(f"Turn order {participant.turn_order} is assigned more than once")
        seen.add(participant.turn_order)


def validate_participants(
    game_type: GameType,
    participants: Sequence[Participant],
    limits: SubmissionLimits,
) -> None:
    """Reject a submission that breaks count, uniqueness, outcome or turn-order rules."""
    count = len(participants)
    if game_type is GameType.PLAYER:
        if limits.cedh_mode and count != limits.max_players:
            raise ValidationError(f"Player games require exactly {limits.max_players} players, got {count}")
        if not limits.min_players <= count <= limits.max_players:
            raise ValidationError(
                f"Player games require {limits.min_players}-{limits.max_players} players, got {count}"
            )
        duplicates = sorted(
            entity_id for entity_id, seen in Counter(p.entity_id for p in participants).items() if seen > 1
        )
        if duplicates:
            raise ValidationError(f"Players listed more than once: {', '.join(duplicates)}")
    else:
        if not limits.min_decks <= count <= limits.max_decks:
            raise ValidationError(f"Deck games require {limits.min_decks}-{limits.max_decks} decks, got {count}")

    for participant in participants:
        if not participant.entity_id:
            raise ValidationError("Participant id must not be empty")

    validate_outcomes([participant.outcome for participant in participants])
    validate_turn_orders(participants)


def generate_game_id(exists: Callable[[str], bool]) -> str:
    """Random 6-character uppercase hex id not yet in use."""
    while True:
        candidate = secrets.token_hex(3).upper()
        if candidate != BEFORE_ALL_ANCHOR and not exists(candidate):
            return candidate


def parse_wld(value: str) -> tuple[int, int, int]:
    """Parse a ``wins/losses/draws`` override string."""
    parts = value.split("/")
    if len(parts) != 3:
        raise ValidationError(f"W/L/D must look like wins/losses/draws, got '{value}'")
    try:
        wins, losses, draws = (int(part) for part in parts)
    except ValueError as exc:
        raise ValidationError(f"W/L/D values must be integers, got '{value}'") from exc
    if min(wins, losses, draws) < 0:
        raise ValidationError(f"W/L/D values must be >= 0, got '{value}'")
    return wins, losses, draws
