"""matches and deck_matches table models."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from podrank.models.base import Base
from podrank.models.mixins import ParticipationMixin


class Match(ParticipationMixin, Base):
    """One player's participation in a player game."""

    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("game_id", "player_id", name="uq_matches_game_player"),
        CheckConstraint("outcome IN ('w', 'l', 'd')", name="ck_matches_outcome"),
        Index("idx_matches_player", "player_id"),
        Index("idx_matches_deck_ref", "deck_ref"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(ForeignKey("games_master.id"), nullable=False, index=True)
    player_id: Mapped[str] = mapped_column(ForeignKey("players.id"), nullable=False)
    # Not a foreign key: a deck can be referenced before it has any rated rows.
    deck_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)


class DeckMatch(ParticipationMixin, Base):
    """One deck instance in a deck game, or a commander row of a player game."""

    __tablename__ = "deck_matches"
    __table_args__ = (
        CheckConstraint("outcome IN ('w', 'l', 'd')", name="ck_deck_matches_outcome"),
        Index("idx_deck_matches_deck", "deck_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(ForeignKey("games_master.id"), nullable=False, index=True)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id"), nullable=False)
    assigned_player_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
