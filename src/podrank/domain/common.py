"""Shared enums and value types for league ratings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from podrank.domain.elo import PRIOR_MU, PRIOR_SIGMA, display_elo


class GameType(str, Enum):
    """Which entity type a game rates."""

    PLAYER = "player"
    DECK = "deck"


class TargetType(str, Enum):
    """Rated entity kinds referenced by audit entries and snapshots."""

    PLAYER = "player"
    DECK = "deck"


class Outcome(str, Enum):
    """Finishing result of one participant."""

    WIN = "w"
    LOSS = "l"
    DRAW = "d"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {Outcome.WIN: 1, Outcome.DRAW: 2, Outcome.LOSS: 3}


class GameStatus(str, Enum):
    CONFIRMED = "confirmed"
    UNDONE = "undone"


class ChangeType(str, Enum):
    """Cause recorded on every audit entry."""

    GAME = "game"
    MANUAL = "manual"
    DECAY = "decay"
    WLD_ADJUSTMENT = "wld_adjustment"
    UNDO = "undo"
    REDO = "redo"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True)
class RatingState:
    """Rating plus win/loss/draw counters for one entity."""

    mu: float = PRIOR_MU
    sigma: float = PRIOR_SIGMA
    wins: int = 0
    losses: int = 0
    draws: int = 0

    @property
    def elo(self) -> int:
        return display_elo(self.mu, self.sigma)

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.draws

    def with_rating(self, mu: float, sigma: float) -> RatingState:
        return RatingState(mu=mu, sigma=sigma, wins=self.wins, losses=self.losses, draws=self.draws)

    def with_outcome(self, outcome: Outcome) -> RatingState:
        return RatingState(
            mu=self.mu,
            sigma=self.sigma,
            wins=self.wins + (1 if outcome is Outcome.WIN else 0),
            losses=self.losses + (1 if outcome is Outcome.LOSS else 0),
            draws=self.draws + (1 if outcome is Outcome.DRAW else 0),
        )


@dataclass(frozen=True)
class Participant:
    """One submitted participant of a completed game.

    ``entity_id`` is a player id for player games and a deck name for deck
    games. ``deck_ref`` is only meaningful for player games and names the deck
    the player piloted.
    """

    entity_id: str
    outcome: Outcome
    turn_order: int | None = None
    deck_ref: str | None = None
