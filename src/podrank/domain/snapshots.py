"""Immutable before/after records that let one mutation be undone or redone.

``Snapshot`` is a closed union; consumers dispatch with ``isinstance`` and end
with ``assert_never`` so a new kind cannot be silently ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TypeAlias, assert_never

from podrank.domain.common import ChangeType, GameType, Outcome, RatingState, TargetType


@dataclass(frozen=True)
class EntityImage:
    """Every stored rating field of one player or deck at one point in time."""

    target_type: TargetType
    entity_id: str
    mu: float
    sigma: float
    wins: int
    losses: int
    draws: int
    last_active: datetime | None = None
    decay_days_applied: int = 0
    display_name: str | None = None

    @property
    def state(self) -> RatingState:
        return RatingState(mu=self.mu, sigma=self.sigma, wins=self.wins, losses=self.losses, draws=self.draws)

    @property
    def elo(self) -> int:
        return self.state.elo


@dataclass(frozen=True)
class MatchRow:
    """One participation row as it was written for a game."""

    entity_id: str
    outcome: Outcome
    turn_order: int | None
    mu: float
    sigma: float
    deck_ref: str | None = None
    assigned_player_id: str | None = None


@dataclass(frozen=True)
class MatchSnapshot:
    """A submitted game.

    ``injected`` games were placed before existing history and triggered a
    replay; undoing or redoing them replays again. Games appended at the end
    of history are inverted by restoring the entity images directly.
    """

    game_id: str
    game_type: GameType
    injected: bool
    before: tuple[EntityImage, ...]
    after: tuple[EntityImage, ...]
    matches: tuple[MatchRow, ...]
    deck_matches: tuple[MatchRow, ...]
    actor: str | None
    created_at: datetime


@dataclass(frozen=True)
class RatingOverride:
    before: EntityImage
    after: EntityImage
    change_type: ChangeType


@dataclass(frozen=True)
class DeckAssignmentChange:
    """Deck reference edits for one player.

    ``before_refs``/``after_refs`` hold ``(game_id, deck_ref)`` for every
    match row that was rewritten; both are empty for default-only changes.
    """

    player_id: str
    game_id: str | None
    all_games: bool
    before_default: str | None
    after_default: str | None
    before_refs: tuple[tuple[str, str | None], ...]
    after_refs: tuple[tuple[str, str | None], ...]

    @property
    def touches_history(self) -> bool:
        return bool(self.after_refs)


@dataclass(frozen=True)
class TurnOrderChange:
    """Turn order of the ``occurrence``-th row of ``entity_id`` in a game."""

    entity_id: str
    occurrence: int
    before: int | None
    after: int | None


@dataclass(frozen=True)
class TurnOrderEdit:
    game_id: str
    game_type: GameType
    changes: tuple[TurnOrderChange, ...]
    bulk: bool = False

    @property
    def label(self) -> str:
        if self.bulk:
            return "bulk_turn_order_removal"
        if all(change.after is None for change in self.changes):
            return "turn_order_removal"
        return "turn_order"


@dataclass(frozen=True)
class ActiveToggle:
    game_id: str
    game_type: GameType
    before: bool
    after: bool


@dataclass(frozen=True)
class GameResultsEdit:
    """Participation rows of one game before and after its results were rewritten.

    A replay follows every restore, so the ratings carried on these rows
    are rewritten afterwards.
    """

    game_id: str
    game_type: GameType
    before: tuple[MatchRow, ...]
    after: tuple[MatchRow, ...]


OverrideChange: TypeAlias = RatingOverride | DeckAssignmentChange | TurnOrderEdit | ActiveToggle | GameResultsEdit


@dataclass(frozen=True)
class OverrideSnapshot:
    change: OverrideChange
    actor: str | None
    reason: str | None
    created_at: datetime


@dataclass(frozen=True)
class DecayEntry:
    before: EntityImage
    after: EntityImage


@dataclass(frozen=True)
class DecaySnapshot:
    entries: tuple[DecayEntry, ...]
    triggered_by: str | None
    created_at: datetime


Snapshot: TypeAlias = MatchSnapshot | OverrideSnapshot | DecaySnapshot


def describe_change(change: OverrideChange) -> str:
    if isinstance(change, RatingOverride):
        return f"{change.change_type.value} override of {change.after.target_type.value} {change.after.entity_id}"
    if isinstance(change, DeckAssignmentChange):
        if change.all_games:
            scope = "all games"
        elif change.game_id is not None:
            scope = f"game {change.game_id}"
        else:
            scope = "future games"
        deck = change.after_default if change.game_id is None else (change.after_refs[0][1] if change.after_refs else None)
        return f"deck assignment of player {change.player_id} to {deck or 'no deck'} for {scope}"
    if isinstance(change, TurnOrderEdit):
        return f"{change.label} in game {change.game_id}"
    if isinstance(change, ActiveToggle):
        state = "activation" if change.after else "deactivation"
        return f"{state} of game {change.game_id}"
    if isinstance(change, GameResultsEdit):
        return f"result edit of {change.game_type.value} game {change.game_id}"
    assert_never(change)


def describe(snapshot: Snapshot) -> str:
    """Human-readable one-line summary of a snapshot."""
    if isinstance(snapshot, MatchSnapshot):
        placement = " (injected)" if snapshot.injected else ""
        return f"{snapshot.game_type.value} game {snapshot.game_id}{placement}"
    if isinstance(snapshot, OverrideSnapshot):
        return describe_change(snapshot.change)
    if isinstance(snapshot, DecaySnapshot):
        return f"decay affecting {len(snapshot.entries)} players"
    assert_never(snapshot)
