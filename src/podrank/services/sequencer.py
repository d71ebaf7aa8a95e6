"""Fractional sequence keys that order every game in league history."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from podrank.domain.errors import NotFoundError
from podrank.domain.validation import BEFORE_ALL_ANCHOR
from podrank.repositories.games import GameRepository

logger = logging.getLogger(__name__)


class Sequencer:
    """Assigns sequence keys by averaging neighbours.

    When floating-point precision runs out between two neighbours, every key
    is rewritten to 1.0, 2.0, ... in current order and the insertion retried.
    Renormalization never changes relative order, so ratings are unaffected.
    """

    def __init__(self, games: GameRepository | None = None) -> None:
        self.games = games or GameRepository()

    def next_sequence(self, session: Session, anchor: str | None = None) -> float:
        """Key for a new game placed after ``anchor``.

        ``None`` appends after all confirmed, active games; ``"0"`` places the
        game before everything; any other value must be a confirmed, active
        game id.
        """
        if anchor is None:
            return self._append(session)
        if anchor == BEFORE_ALL_ANCHOR:
            return self._before_all(session)
        return self._after_game(session, anchor)

    def renormalize(self, session: Session) -> int:
        """Rewrite all keys to evenly spaced integers; returns the number of games."""
        games = self.games.all_in_order(session)
        for position, game in enumerate(games, start=1):
            game.sequence = float(position)
        session.flush()
        logger.info("Renormalized sequence keys for %d games", len(games))
        return len(games)

    def _append(self, session: Session) -> float:
        candidate = self._after_active_tail(session)
        if candidate is None:
            self.renormalize(session)
            candidate = self._after_active_tail(session)
            if candidate is None:
                raise RuntimeError("Could not place a game after history even after renormalizing")
        return candidate

    def _after_active_tail(self, session: Session) -> float | None:
        # Inactive games past the active tail keep their keys; stay below them.
        current = self.games.max_active_sequence(session)
        if current is None:
            current = 0.0
        candidate = current + 1.0
        following = self.games.next_confirmed_sequence(session, current)
        if following is not None and following <= candidate:
            candidate = (current + following) / 2.0
        if current < candidate and (following is None or candidate < following):
            return candidate
        return None

    def _before_all(self, session: Session) -> float:
        first = self.games.min_confirmed_sequence(session)
        if first is None:
            return 1.0
        candidate = first / 2.0
        if not 0.0 < candidate < first:
            self.renormalize(session)
            first = self.games.min_confirmed_sequence(session) or 1.0
            candidate = first / 2.0
        return candidate

    def _after_game(self, session: Session, anchor: str) -> float:
        candidate = self._midpoint_after(session, anchor)
        if candidate is None:
            self.renormalize(session)
            candidate = self._midpoint_after(session, anchor)
            if candidate is None:
                raise RuntimeError(f"Could not place a game after {anchor} even after renormalizing")
        return candidate

    def _midpoint_after(self, session: Session, anchor: str) -> float | None:
        game = self.games.get_confirmed_active(session, anchor)
        if game is None:
            raise NotFoundError(f'Game ID "{anchor}" not found or is not confirmed')

        following = self.games.next_confirmed_sequence(session, game.sequence)
        if following is None:
            return game.sequence + 1.0
        candidate = (game.sequence + following) / 2.0
        if game.sequence < candidate < following:
            return candidate
        return None
