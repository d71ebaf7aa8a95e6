"""Schema creation shared by all repositories."""

from __future__ import annotations

from sqlalchemy.engine import Engine

from podrank.models import Deck, DeckMatch, Game, Match, Player, RatingChange

_TABLES_IN_DEPENDENCY_ORDER = (Player, Deck, Game, Match, DeckMatch, RatingChange)


def ensure_schema(engine: Engine) -> None:
    """Create required tables and indexes when missing."""
    with engine.begin() as connection:
        for model in _TABLES_IN_DEPENDENCY_ORDER:
            table = getattr(model, "__table__")
            table.create(bind=connection, checkfirst=True)
