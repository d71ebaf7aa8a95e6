"""players table model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from podrank.models.base import Base
from podrank.models.mixins import RatedEntityMixin


class Player(RatedEntityMixin, Base):
    __tablename__ = "players"
    __table_args__ = (
        CheckConstraint("sigma > 0.0", name="ck_players_sigma"),
        CheckConstraint("wins >= 0 AND losses >= 0 AND draws >= 0", name="ck_players_counts"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    decay_days_applied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_deck: Mapped[str | None] = mapped_column(String(128), nullable=True)
    restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
