"""decks table model."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from podrank.models.base import Base
from podrank.models.mixins import RatedEntityMixin


class Deck(RatedEntityMixin, Base):
    """A deck archetype, keyed by its normalized name."""

    __tablename__ = "decks"
    __table_args__ = (
        CheckConstraint("sigma > 0.0", name="ck_decks_sigma"),
        CheckConstraint("wins >= 0 AND losses >= 0 AND draws >= 0", name="ck_decks_counts"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
