"""games_master table model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from podrank.models.base import Base


class Game(Base):
    """Master record of one submitted game; ``sequence`` orders all history."""

    __tablename__ = "games_master"
    __table_args__ = (
        CheckConstraint("game_type IN ('player', 'deck')", name="ck_games_master_game_type"),
        CheckConstraint("status IN ('confirmed', 'undone')", name="ck_games_master_status"),
        Index("idx_games_master_sequence", "sequence"),
        Index("idx_games_master_type_status_active", "game_type", "status", "active"),
    )

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    game_type: Mapped[str] = mapped_column(String(16), nullable=False)
    sequence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="confirmed")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    submitted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
