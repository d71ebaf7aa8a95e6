"""SQLAlchemy mixins for columns shared by rated entities and participation rows."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from podrank.domain.elo import PRIOR_MU, PRIOR_SIGMA


class RatedEntityMixin:
    """Current rating and counters of a player or deck."""

    mu: Mapped[float] = mapped_column(Float, nullable=False, default=PRIOR_MU)
    sigma: Mapped[float] = mapped_column(Float, nullable=False, default=PRIOR_SIGMA)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.draws


class ParticipationMixin:
    """Outcome and post-game rating of one entity in one game."""

    outcome: Mapped[str] = mapped_column(String(1), nullable=False)
    turn_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mu: Mapped[float] = mapped_column(Float, nullable=False)
    sigma: Mapped[float] = mapped_column(Float, nullable=False)
